"""MCP Everything: generate Model Context Protocol servers from GitHub repositories."""

__version__ = "0.1.0"
