"""Storefront: API gateway with inventory and orders backend services."""

__version__ = "0.1.0"
