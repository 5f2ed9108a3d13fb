"""Bundled MCP stdio servers."""
