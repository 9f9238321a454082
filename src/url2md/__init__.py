"""Batch conversion of web pages to Markdown with local image assets."""

from .version import __version__

__all__ = ["__version__"]
