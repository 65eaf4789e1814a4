from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List


@dataclass(frozen=True)
class OrderedCollection:
    key: str
    table: str
    parent_column: str | None = None
    parent_collection: str | None = None
    rank_column: str = "orden"
    tiebreak_column: str = "created_at"
    active_clause: str = "active = 1"

    @property
    def is_grouped(self) -> bool:
        return self.parent_column is not None


@dataclass(frozen=True)
class Scope:
    """Boundary inside which ranks must form 1..N."""

    collection: OrderedCollection
    tenant_id: str
    parent_id: str | None = None

    def describe(self) -> Dict[str, str | None]:
        return {
            "collection": self.collection.key,
            "tenant_id": self.tenant_id,
            "parent_id": self.parent_id,
        }


COLLECTIONS: Dict[str, OrderedCollection] = {
    "plans": OrderedCollection(key="plans", table="platform_plans"),
    "pipeline_stages": OrderedCollection(key="pipeline_stages", table="pipeline_stages"),
    "catalog_sections": OrderedCollection(key="catalog_sections", table="catalog_sections"),
    "catalog_categories": OrderedCollection(
        key="catalog_categories",
        table="catalog_categories",
        parent_column="section_id",
        parent_collection="catalog_sections",
    ),
    "catalog_services": OrderedCollection(
        key="catalog_services",
        table="catalog_services",
        parent_column="category_id",
        parent_collection="catalog_categories",
    ),
    "personnel_categories": OrderedCollection(key="personnel_categories", table="personnel_categories"),
    "personnel": OrderedCollection(
        key="personnel",
        table="personnel",
        parent_column="category_id",
        parent_collection="personnel_categories",
    ),
}


def collection_keys() -> List[str]:
    return sorted(COLLECTIONS.keys())


def get_collection(key: str | None) -> OrderedCollection | None:
    return COLLECTIONS.get(str(key or "").strip().lower())
