"""Rank planning for user-orderable lists.

Every function here is pure: it receives the rows of one scope and returns
the rank each row must end up with. Persisting the plan is the job of the
application service, which applies it inside a single transaction.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Sequence

from zen_platform.errors import InvalidRankError, NotFoundError, ValidationError


@dataclass(frozen=True)
class RankedItem:
    id: str
    rank: int | None
    tiebreak: Any = None


@dataclass(frozen=True)
class RankChange:
    item_id: str
    old_rank: int | None
    new_rank: int

    @property
    def changed(self) -> bool:
        return self.old_rank != self.new_rank


@dataclass(frozen=True)
class RankPlan:
    assignments: List[RankChange] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.assignments)

    @property
    def changes(self) -> List[RankChange]:
        return [change for change in self.assignments if change.changed]

    def rank_of(self, item_id: str) -> int | None:
        for change in self.assignments:
            if change.item_id == item_id:
                return change.new_rank
        return None


@dataclass(frozen=True)
class DriftReport:
    count: int
    gaps: int
    duplicates: int
    unranked: int

    @property
    def is_normalized(self) -> bool:
        return self.gaps == 0 and self.duplicates == 0 and self.unranked == 0


def sort_key(item: RankedItem) -> tuple:
    # Sem ordem vai para o fim; desempate por tiebreak e, por ultimo, pelo id.
    return (
        item.rank is None,
        item.rank if item.rank is not None else 0,
        item.tiebreak is None,
        item.tiebreak if item.tiebreak is not None else "",
        str(item.id),
    )


def order_items(items: Iterable[RankedItem]) -> List[RankedItem]:
    return sorted(items, key=sort_key)


def _assign_in_sequence(ordered: Sequence[RankedItem]) -> RankPlan:
    return RankPlan(
        assignments=[
            RankChange(item_id=item.id, old_rank=item.rank, new_rank=index + 1)
            for index, item in enumerate(ordered)
        ]
    )


def plan_normalization(items: Iterable[RankedItem]) -> RankPlan:
    """Contiguous 1..N ranks following (rank, tiebreak) order."""
    return _assign_in_sequence(order_items(items))


def _ensure_rank(value: Any, *, upper: int, field_name: str = "rank") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRankError(payload={"field": field_name, "min": 1, "max": upper})
    if value < 1 or value > upper:
        raise InvalidRankError(payload={"field": field_name, "min": 1, "max": upper})
    return value


def plan_move(items: Iterable[RankedItem], item_id: str, new_rank: Any) -> RankPlan:
    """Move one item to new_rank, shifting the ones in between one step."""
    ordered = order_items(items)
    _ensure_rank(new_rank, upper=len(ordered))
    moving = next((item for item in ordered if item.id == item_id), None)
    if moving is None:
        raise NotFoundError(payload={"item_id": item_id})

    remaining = [item for item in ordered if item.id != item_id]
    remaining.insert(new_rank - 1, moving)
    return _assign_in_sequence(remaining)


def plan_insert(items: Iterable[RankedItem], incoming: RankedItem, new_rank: Any) -> RankPlan:
    """Open a slot at new_rank for an item arriving from another scope."""
    ordered = [item for item in order_items(items) if item.id != incoming.id]
    _ensure_rank(new_rank, upper=len(ordered) + 1)
    ordered.insert(new_rank - 1, incoming)
    return _assign_in_sequence(ordered)


def plan_removal(items: Iterable[RankedItem], item_id: str) -> RankPlan:
    return plan_normalization(item for item in items if item.id != item_id)


def _invalid_rank_list(field_name: str, **extra) -> ValidationError:
    return ValidationError(
        code="rank_list_invalid",
        message_key="rank_list_invalid",
        payload={"field": field_name, **extra},
    )


def validate_rank_assignments(assignments: Any, scope_ids: Iterable[str]) -> dict[str, int]:
    """Check a client supplied {id, rank} list against the ids of the scope.

    The list must name every item of the scope exactly once and the ranks
    must be exactly the permutation 1..N.
    """
    if not isinstance(assignments, (list, tuple)) or not assignments:
        raise _invalid_rank_list("items")

    expected_ids = {str(item_id) for item_id in scope_ids}
    size = len(expected_ids)
    ranks_by_id: dict[str, int] = {}
    for index, entry in enumerate(assignments):
        if not isinstance(entry, dict):
            raise _invalid_rank_list(f"items[{index}]")
        raw_id = entry.get("id")
        if not isinstance(raw_id, str) or not raw_id.strip():
            raise _invalid_rank_list(f"items[{index}].id")
        item_id = raw_id.strip()
        if item_id in ranks_by_id:
            raise _invalid_rank_list(f"items[{index}].id", reason="duplicate_id", item_id=item_id)
        rank = entry.get("rank")
        if isinstance(rank, bool) or not isinstance(rank, int):
            raise _invalid_rank_list(f"items[{index}].rank")
        ranks_by_id[item_id] = rank

    unknown = sorted(set(ranks_by_id) - expected_ids)
    if unknown:
        raise NotFoundError(payload={"item_id": unknown[0]})
    missing = sorted(expected_ids - set(ranks_by_id))
    if missing:
        raise _invalid_rank_list("items", reason="missing_ids", missing=missing)
    if sorted(ranks_by_id.values()) != list(range(1, size + 1)):
        raise _invalid_rank_list("items", reason="ranks_not_contiguous", expected_max=size)
    return ranks_by_id


def assignments_from_ids(ordered_ids: Any) -> List[dict]:
    if not isinstance(ordered_ids, (list, tuple)) or not ordered_ids:
        raise _invalid_rank_list("ids")
    return [{"id": item_id, "rank": index + 1} for index, item_id in enumerate(ordered_ids)]


def plan_explicit(items: Iterable[RankedItem], ranks_by_id: dict[str, int]) -> RankPlan:
    ordered = sorted(items, key=lambda item: ranks_by_id[item.id])
    return RankPlan(
        assignments=[
            RankChange(item_id=item.id, old_rank=item.rank, new_rank=ranks_by_id[item.id])
            for item in ordered
        ]
    )


def detect_drift(items: Iterable[RankedItem]) -> DriftReport:
    materialized = list(items)
    size = len(materialized)
    ranked = [item.rank for item in materialized if item.rank is not None]
    counts = Counter(ranked)
    duplicates = sum(occurrences - 1 for occurrences in counts.values() if occurrences > 1)
    gaps = sum(1 for expected in range(1, size + 1) if expected not in counts)
    return DriftReport(
        count=size,
        gaps=gaps,
        duplicates=duplicates,
        unranked=size - len(ranked),
    )
