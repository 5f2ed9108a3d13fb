"""orchat: multi-model chat backend powered by OpenRouter and MCP."""

__version__ = "0.1.0"
