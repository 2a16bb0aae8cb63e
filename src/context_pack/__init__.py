"""Select files from a source tree and export them as one LLM-ready document."""

__version__ = "0.3.0"
