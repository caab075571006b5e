"""Main entry point for running mcpeverything as a module.

Usage:
    python -m mcpeverything --help
    python -m mcpeverything generate https://github.com/owner/repo
"""

from __future__ import annotations

from .cli import app

if __name__ == "__main__":
    app()
