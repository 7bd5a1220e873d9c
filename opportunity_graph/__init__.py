"""Natural-language question answering over the AI opportunity graph."""

__version__ = "1.2.0"
