"""Command-line interface."""

from sqlexplain.cli.main import app

__all__ = ["app"]
