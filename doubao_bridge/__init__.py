"""HTTP bridge exposing the Doubao web chat as a small JSON API."""

__version__ = "0.1.0"
