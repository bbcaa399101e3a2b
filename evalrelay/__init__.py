"""Streaming LLM relay for document evaluation."""

__version__ = "0.1.0"
