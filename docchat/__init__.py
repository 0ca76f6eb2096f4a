"""docchat: ask questions about a local document corpus."""

__version__ = "0.1.0"
