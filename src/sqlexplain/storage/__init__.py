"""Durable storage of computed explanations (SQLAlchemy async)."""

from sqlexplain.storage.models import ExplanationRecord
from sqlexplain.storage.store import ExplanationStore

__all__ = ["ExplanationRecord", "ExplanationStore"]
