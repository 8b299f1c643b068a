"""Fallback decision engine and restore sweeper."""

from .decision import FallbackEngine, FallbackOutcome, is_credit_exhausted
from .sweeper import RestoreSweeper, SweepReport

__all__ = [
    "FallbackEngine",
    "FallbackOutcome",
    "RestoreSweeper",
    "SweepReport",
    "is_credit_exhausted",
]
