"""Shared-parameter multi-threaded evaluation of a feed-forward classifier."""

__version__ = "0.1.0"
