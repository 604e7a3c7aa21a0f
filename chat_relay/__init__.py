"""Chat relay: proxies chat messages to an OpenAI-compatible completion API."""

__version__ = "0.1.0"
