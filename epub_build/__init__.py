"""Build, preview, package and validate EPUB packages from a source tree."""

__version__ = "0.1.0"
