"""
API route modules.
"""

from voccal.api.routes import filters, health, render

__all__ = ["filters", "health", "render"]
