"""Storefront cart and checkout core."""
__version__ = "1.0.0"
