"""
flun - a text template engine with block inheritance, includes and a
sandboxed expression language.
"""

__version__ = "1.0.0"
__all__ = ["__version__"]
