"""Prediction awards."""

from .awards import COVERAGE_LADDER, Award, AwardKind, AwardWinner, compute_awards

__all__ = ["COVERAGE_LADDER", "Award", "AwardKind", "AwardWinner", "compute_awards"]
