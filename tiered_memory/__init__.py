"""Tiered conversational memory: recent buffer, durable store and semantic index."""

__version__ = "0.1.0"
