"""GameHub realtime messaging and presence layer."""

__version__ = "0.1.0"
