"""Partsdesk: shipping and payment backend for the auto-parts storefront."""

__version__ = "0.3.0"
