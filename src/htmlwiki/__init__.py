"""htmlwiki: a layered personal wiki of plain HTML and Markdown files."""

from .core import Wiki

__version__ = "0.1.0"

__all__ = ["Wiki", "__version__"]
