"""spendmap - resolve city and category from expense descriptions."""

from ._version import VERSION as __version__

__all__ = ['__version__']
