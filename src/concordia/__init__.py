"""Concordia -- user-lifecycle consistency engine for a document-store marketplace."""

__version__ = "0.1.0"
