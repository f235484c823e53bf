"""genhub: uniform dispatch to third-party media generation providers."""

__version__ = "0.1.0"
