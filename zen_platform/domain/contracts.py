from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class NormalizationResult:
    success: bool
    normalized_count: int
    changed_count: int = 0
    message: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "normalizedCount": self.normalized_count,
            "changedCount": self.changed_count,
        }


@dataclass(frozen=True)
class MoveItemInput:
    item_id: str
    new_rank: Any
    new_parent_id: str | None = None


@dataclass(frozen=True)
class ScopeReport:
    scope: Dict[str, Any]
    items: List[Dict[str, Any]] = field(default_factory=list)
    count: int = 0
    gaps: int = 0
    duplicates: int = 0
    unranked: int = 0
    is_normalized: bool = True

    def to_payload(self) -> Dict[str, Any]:
        return {
            "scope": dict(self.scope),
            "items": list(self.items),
            "count": self.count,
            "gaps": self.gaps,
            "duplicates": self.duplicates,
            "unranked": self.unranked,
            "is_normalized": self.is_normalized,
        }
