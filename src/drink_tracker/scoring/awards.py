"""Awards: rankings over participants, predictions and consumption counts.

Four independent rankings, each returning every tied winner:

  most_consumed       argmax  own consumption count
  best_predictor      argmin  MAE(predictor) over eligible predictors
  hardest_to_predict  argmax  crowd MAE(target), targets with >= 2 predictors
  worst_predictor     argmax  MAE(predictor) over eligible predictors

  MAE(predictor) = mean(|predicted - actual(target)|) over the predictor's targets
  coverage       = predicted targets / (participants - 1)

Eligibility walks ``COVERAGE_LADDER``: the first threshold that admits at
least one predictor wins, ending with "any prediction at all", so the
predictor awards always exist once a single prediction does.

Errors are exact ``Fraction`` values so ties are detected exactly.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from enum import Enum
from fractions import Fraction

from pydantic import BaseModel, Field

from drink_tracker.core.models import Participant, Prediction

logger = logging.getLogger(__name__)

# Minimum coverage per rung; ``None`` admits any predictor with a prediction.
COVERAGE_LADDER: tuple[float | None, ...] = (0.5, 0.33, None)

# Crowd MAE needs this many predictors per target.
MIN_PREDICTORS_PER_TARGET = 2


class AwardKind(str, Enum):
    MOST_CONSUMED = "most_consumed"
    BEST_PREDICTOR = "best_predictor"
    HARDEST_TO_PREDICT = "hardest_to_predict"
    WORST_PREDICTOR = "worst_predictor"


class AwardWinner(BaseModel):
    participant_id: str
    name: str
    avatar_ref: str | None = None


class Award(BaseModel):
    kind: AwardKind
    value: float  # Drinks for most_consumed, MAE otherwise
    winners: list[AwardWinner] = Field(default_factory=list)
    coverage_threshold: float | None = None  # Rung used by predictor awards


def compute_awards(
    participants: Iterable[Participant],
    predictions: Iterable[Prediction],
    consumption_counts: Mapping[str, int],
) -> list[Award]:
    """Compute all awards.  Pure function of its inputs.

    Returns an empty list without participants and only ``most_consumed``
    without usable predictions.
    """
    by_id = {p.id: p for p in participants}
    if not by_id:
        return []

    actual = {pid: consumption_counts.get(pid, 0) for pid in by_id}
    awards = [_most_consumed(by_id, actual)]

    usable = [
        p for p in predictions
        if p.predictor_id in by_id
        and p.target_id in by_id
        and p.predictor_id != p.target_id
    ]
    if not usable:
        return awards

    errors_by_predictor: dict[str, list[int]] = defaultdict(list)
    errors_by_target: dict[str, list[int]] = defaultdict(list)
    for p in usable:
        error = abs(p.predicted_drinks - actual[p.target_id])
        errors_by_predictor[p.predictor_id].append(error)
        errors_by_target[p.target_id].append(error)

    threshold, eligible = eligible_predictors(errors_by_predictor, len(by_id))
    predictor_mae = {pid: _mean(errors_by_predictor[pid]) for pid in eligible}

    best_value, best_ids = _extreme(predictor_mae, lowest=True)
    awards.append(_award(AwardKind.BEST_PREDICTOR, best_value, best_ids, by_id, threshold))

    crowd_mae = {
        tid: _mean(errs)
        for tid, errs in errors_by_target.items()
        if len(errs) >= MIN_PREDICTORS_PER_TARGET
    }
    if crowd_mae:
        hard_value, hard_ids = _extreme(crowd_mae, lowest=False)
        awards.append(_award(AwardKind.HARDEST_TO_PREDICT, hard_value, hard_ids, by_id))

    worst_value, worst_ids = _extreme(predictor_mae, lowest=False)
    awards.append(_award(AwardKind.WORST_PREDICTOR, worst_value, worst_ids, by_id, threshold))
    return awards


def eligible_predictors(
    errors_by_predictor: Mapping[str, list[int]],
    participant_count: int,
) -> tuple[float | None, list[str]]:
    """Return ``(threshold, predictor_ids)`` for the first rung that admits anyone."""
    possible_targets = max(participant_count - 1, 1)
    coverage = {
        pid: len(errs) / possible_targets
        for pid, errs in errors_by_predictor.items()
        if errs
    }
    for threshold in COVERAGE_LADDER:
        if threshold is None:
            chosen = sorted(coverage)
        else:
            chosen = sorted(pid for pid, c in coverage.items() if c >= threshold)
        if chosen:
            logger.debug(
                "Predictor eligibility: threshold=%s eligible=%d", threshold, len(chosen),
            )
            return threshold, chosen
    return None, []


# -- Helpers ---------------------------------------------------------------

def _mean(values: list[int]) -> Fraction:
    return Fraction(sum(values), len(values))


def _extreme(
    scores: Mapping[str, Fraction | int],
    *,
    lowest: bool,
) -> tuple[Fraction | int, list[str]]:
    target = min(scores.values()) if lowest else max(scores.values())
    return target, [pid for pid, v in scores.items() if v == target]


def _most_consumed(
    by_id: Mapping[str, Participant],
    actual: Mapping[str, int],
) -> Award:
    value, ids = _extreme(actual, lowest=False)
    return _award(AwardKind.MOST_CONSUMED, value, ids, by_id)


def _award(
    kind: AwardKind,
    value: Fraction | int,
    ids: list[str],
    by_id: Mapping[str, Participant],
    threshold: float | None = None,
) -> Award:
    winners = sorted(
        (
            AwardWinner(
                participant_id=pid,
                name=by_id[pid].name,
                avatar_ref=by_id[pid].avatar_ref,
            )
            for pid in ids
        ),
        key=lambda w: (w.name.casefold(), w.participant_id),
    )
    return Award(
        kind=kind,
        value=float(value),
        winners=winners,
        coverage_threshold=threshold,
    )
