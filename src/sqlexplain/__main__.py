"""
Entry point for ``python -m sqlexplain``.

Usage:
    python -m sqlexplain explain "SELECT 1"
    python -m sqlexplain serve --port 3000
"""

from sqlexplain.cli.main import app

if __name__ == "__main__":
    app()
