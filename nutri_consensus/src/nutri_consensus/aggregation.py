"""Merge algorithms for item lists reported by several providers."""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Sequence, Tuple

from .errors import AggregationEmptyError
from .models import Confidence, LineItem, NutritionTotals, ProviderPayload

logger = logging.getLogger(__name__)

WHOLE_FIELDS = ("quantity", "calories")
FRACTIONAL_FIELDS = ("carbs", "fats", "proteins")


class MergeStrategy(Enum):
    """How numeric estimates for the same item are combined."""
    PAIRWISE = "pairwise"          # Running pairwise average in arrival order
    RUNNING_MEAN = "running_mean"  # True N-way mean per item


@dataclass
class AggregatedRecord:
    items: List[LineItem]
    totals: NutritionTotals
    providers_used: int
    confidence: Confidence


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves away from zero; values here are never negative."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _round_field(name: str, value: float) -> float:
    if name in WHOLE_FIELDS:
        return round_half_up(value)
    return round_half_up(value, 1)


def sum_totals(items: Sequence[LineItem]) -> NutritionTotals:
    """Exact per-measure sum; fsum keeps it independent of item order."""
    return NutritionTotals(
        calories=math.fsum(i.calories for i in items),
        carbs=math.fsum(i.carbs for i in items),
        fats=math.fsum(i.fats for i in items),
        proteins=math.fsum(i.proteins for i in items),
    )


def _merge_pairwise(payloads: Sequence[ProviderPayload]) -> List[LineItem]:
    merged: Dict[str, LineItem] = {}
    for payload in payloads:
        for item in payload.items:
            existing = merged.get(item.key)
            if existing is None:
                merged[item.key] = item
                continue
            values = {
                f: _round_field(f, (getattr(existing, f) + getattr(item, f)) / 2)
                for f in WHOLE_FIELDS + FRACTIONAL_FIELDS
            }
            merged[item.key] = LineItem(name=item.name, unit=existing.unit, **values)
    return list(merged.values())


def _merge_running_mean(payloads: Sequence[ProviderPayload]) -> List[LineItem]:
    sums: Dict[str, Tuple[LineItem, Dict[str, float], int]] = {}
    for payload in payloads:
        for item in payload.items:
            first, acc, count = sums.get(item.key, (item, {f: 0.0 for f in WHOLE_FIELDS + FRACTIONAL_FIELDS}, 0))
            for f in acc:
                acc[f] += getattr(item, f)
            sums[item.key] = (first, acc, count + 1)

    items = []
    for first, acc, count in sums.values():
        if count == 1:
            items.append(first)
            continue
        values = {f: _round_field(f, total / count) for f, total in acc.items()}
        items.append(LineItem(name=first.name, unit=first.unit, **values))
    return items


def aggregate(
    payloads: Sequence[ProviderPayload],
    strategy: MergeStrategy = MergeStrategy.PAIRWISE,
) -> AggregatedRecord:
    """Merge one or more provider payloads into a single record.

    A single payload passes through unchanged, keeping the provider's own
    totals. With several payloads, items are keyed by trimmed lowercase name
    and merged per ``strategy``; totals are recomputed from the merged items.

    Raises:
        AggregationEmptyError: if there is nothing to merge, the merged list is empty,
            or merged values overflow a float
    """
    if not payloads:
        raise AggregationEmptyError("no provider payloads to aggregate")

    if len(payloads) == 1:
        only = payloads[0]
        if not only.items:
            raise AggregationEmptyError("single provider payload has no items")
        try:
            totals = only.totals if only.totals is not None else sum_totals(only.items)
        except OverflowError as e:
            raise AggregationEmptyError(f"item totals out of range: {e}") from e
        return AggregatedRecord(
            items=list(only.items),
            totals=totals,
            providers_used=1,
            confidence=Confidence.MEDIUM,
        )

    merge = _merge_running_mean if strategy is MergeStrategy.RUNNING_MEAN else _merge_pairwise
    try:
        items = merge(payloads)
        totals = sum_totals(items)
    except OverflowError as e:
        # Finite inputs whose mean or sum no longer fits in a float
        raise AggregationEmptyError(f"merged values out of range: {e}") from e

    if not items:
        raise AggregationEmptyError(f"{len(payloads)} provider payloads merged to zero items")

    logger.debug("Merged %d payload(s) into %d item(s) using %s", len(payloads), len(items), strategy.value)
    return AggregatedRecord(
        items=items,
        totals=totals,
        providers_used=len(payloads),
        confidence=Confidence.HIGH,
    )
