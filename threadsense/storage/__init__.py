"""Phrase weight storage backends."""

from .base import WeightStore
from .sqlite import SQLiteWeightStore

__all__ = ["WeightStore", "SQLiteWeightStore"]
