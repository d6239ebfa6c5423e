"""AstraShell - a tool-calling shell assistant driven by a local model."""

__version__ = "0.1.0"
