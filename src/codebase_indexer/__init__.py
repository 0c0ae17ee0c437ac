"""Indexing pipeline for TypeScript, JavaScript and Vue code bases."""

__version__ = "0.1.0"
TOOL_NAME = "codebase-indexer"
