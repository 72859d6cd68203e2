"""Popularity-based tiering engine for directories, with its configuration, metadata store and control client."""

__version__ = "1.2.0"