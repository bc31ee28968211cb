"""DeepSearch: an AI chat service that researches answers on the web."""

__version__ = "0.1.0"
