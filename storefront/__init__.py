"""Storefront discount engine"""

__version__ = "1.0.0"
