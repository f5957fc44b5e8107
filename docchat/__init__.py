"""docchat: chat with your documents through a local LLM."""

__version__ = "0.1.0"
