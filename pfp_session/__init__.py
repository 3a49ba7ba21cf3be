"""PfP Session — master password lifecycle and encrypted storage."""
from .version import __version__

__all__ = ["__version__"]
