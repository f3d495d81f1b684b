"""
SQLExplain HTTP API.

Run with:
    sqlexplain serve
    uvicorn sqlexplain.api.app:create_app --factory
"""

from sqlexplain.api.app import create_app

__all__ = ["create_app"]
