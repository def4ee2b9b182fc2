"""Embedding acquisition and cosine-similarity engine for comparing two documents."""

__version__ = "0.1.0"
