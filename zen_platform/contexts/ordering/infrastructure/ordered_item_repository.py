from __future__ import annotations

import uuid

from zen_platform.contexts.ordering.domain.collections import OrderedCollection, Scope, get_collection
from zen_platform.contexts.ordering.domain.ranking import RankedItem
from zen_platform.infrastructure.repositories.base import BaseRepository


class OrderedItemRepository(BaseRepository):
    """Rows of one orderable collection, always filtered by tenant."""

    def __init__(self, collection: OrderedCollection, *, tenant_id: str | None = None) -> None:
        super().__init__(tenant_id=tenant_id)
        self.collection = collection

    @property
    def table(self) -> str:
        return self.collection.table

    def scope(self, parent_id: str | None = None) -> Scope:
        return Scope(collection=self.collection, tenant_id=self.tenant_id, parent_id=parent_id)

    def _scope_where(self, scope: Scope) -> tuple[str, tuple]:
        clauses = [self.build_tenant_clause(), self.collection.active_clause]
        params: list = [scope.tenant_id]
        if self.collection.parent_column:
            clauses.append(f"{self.collection.parent_column} = ?")
            params.append(scope.parent_id)
        return " AND ".join(clauses), tuple(params)

    def _select_columns(self) -> str:
        columns = ["id", "tenant_id", "name", self.collection.rank_column, "active", self.collection.tiebreak_column]
        if self.collection.parent_column:
            columns.append(self.collection.parent_column)
        return ", ".join(dict.fromkeys(columns))

    def find_many(self, db, scope: Scope, *, order_by: str = "rank") -> list[dict]:
        rank = self.collection.rank_column
        tiebreak = self.collection.tiebreak_column
        if order_by == "rank":
            # NULL por ultimo, igual a ranking.sort_key.
            order_sql = f"{rank} IS NULL, {rank} ASC, {tiebreak} IS NULL, {tiebreak} ASC, id ASC"
        else:
            order_sql = "id ASC"
        where_sql, params = self._scope_where(scope)
        rows = db.execute(
            f"""
            SELECT {self._select_columns()}
            FROM {self.table}
            WHERE {where_sql}
            ORDER BY {order_sql}
            """,
            params,
        ).fetchall()
        return self.rows_to_dicts(rows)

    def find_ranked(self, db, scope: Scope) -> list[RankedItem]:
        return [self.to_ranked_item(row) for row in self.find_many(db, scope)]

    def to_ranked_item(self, row: dict) -> RankedItem:
        raw_rank = row.get(self.collection.rank_column)
        return RankedItem(
            id=str(row["id"]),
            rank=int(raw_rank) if raw_rank is not None else None,
            tiebreak=row.get(self.collection.tiebreak_column),
        )

    def count(self, db, scope: Scope) -> int:
        where_sql, params = self._scope_where(scope)
        row = db.execute(
            f"SELECT COUNT(*) AS total FROM {self.table} WHERE {where_sql}",
            params,
        ).fetchone()
        if not row:
            return 0
        return int(row["total"] if isinstance(row, dict) else row[0])

    def get_by_id(self, db, item_id: str) -> dict | None:
        row = db.execute(
            f"""
            SELECT {self._select_columns()}
            FROM {self.table}
            WHERE id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (item_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None

    def scope_of(self, row: dict) -> Scope:
        parent_id = row.get(self.collection.parent_column) if self.collection.parent_column else None
        return self.scope(parent_id=str(parent_id) if parent_id is not None else None)

    def update_rank(self, db, item_id: str, rank: int, *, expected_rank: int | None = None, check: bool = True) -> int:
        """Write a new rank; with check=True only if the stored rank still equals expected_rank.

        Returns the affected row count so callers can detect a concurrent writer.
        """
        rank_column = self.collection.rank_column
        where = ["id = ?", "tenant_id = ?"]
        params: list = [rank, item_id, self.tenant_id]
        if check:
            where.append(self.null_safe_equals(db, rank_column))
            params.append(expected_rank)
        cursor = db.execute(
            f"""
            UPDATE {self.table}
            SET {rank_column} = ?, updated_at = CURRENT_TIMESTAMP
            WHERE {" AND ".join(where)}
            """,
            tuple(params),
        )
        return int(getattr(cursor, "rowcount", 0) or 0)

    def id_exists(self, db, item_id: str) -> bool:
        """Whether any tenant already uses this id; the primary key is table-wide."""
        row = db.execute(
            f"SELECT 1 FROM {self.table} WHERE id = ? LIMIT 1",
            (item_id,),
        ).fetchone()
        return row is not None

    def create(
        self,
        db,
        *,
        name: str,
        rank: int | None,
        parent_id: str | None = None,
        item_id: str | None = None,
        active: bool = True,
        created_at: str | None = None,
    ) -> str:
        new_id = str(item_id or uuid.uuid4())
        columns = ["id", "tenant_id", "name", self.collection.rank_column, "active"]
        values: list = [new_id, self.tenant_id, name, rank, 1 if active else 0]
        if self.collection.parent_column:
            columns.append(self.collection.parent_column)
            values.append(parent_id)
        if created_at:
            columns.append("created_at")
            values.append(created_at)
        placeholders = ", ".join("?" for _ in columns)
        db.execute(
            f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({placeholders})",
            tuple(values),
        )
        return new_id

    def deactivate(self, db, item_id: str) -> int:
        cursor = db.execute(
            f"""
            UPDATE {self.table}
            SET active = 0, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND active = 1
            """,
            (item_id, self.tenant_id),
        )
        return int(getattr(cursor, "rowcount", 0) or 0)

    def move_parent(self, db, item_id: str, parent_id: str, rank: int) -> int:
        parent_column = self.collection.parent_column
        if not parent_column:
            raise ValueError(f"collection {self.collection.key} has no parent column")
        cursor = db.execute(
            f"""
            UPDATE {self.table}
            SET {parent_column} = ?, {self.collection.rank_column} = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND active = 1
            """,
            (parent_id, rank, item_id, self.tenant_id),
        )
        return int(getattr(cursor, "rowcount", 0) or 0)

    def parent_exists(self, db, parent_id: str | None) -> bool:
        parent = get_collection(self.collection.parent_collection)
        if parent is None or not parent_id:
            return False
        row = db.execute(
            f"""
            SELECT 1
            FROM {parent.table}
            WHERE id = ? AND tenant_id = ? AND {parent.active_clause}
            LIMIT 1
            """,
            (parent_id, self.tenant_id),
        ).fetchone()
        return row is not None

    def parent_ids(self, db) -> list[str]:
        """Active parents of this tenant, in their own rank order."""
        parent = get_collection(self.collection.parent_collection)
        if parent is None:
            return []
        rows = db.execute(
            f"""
            SELECT id
            FROM {parent.table}
            WHERE tenant_id = ? AND {parent.active_clause}
            ORDER BY {parent.rank_column} IS NULL, {parent.rank_column} ASC, id ASC
            """,
            (self.tenant_id,),
        ).fetchall()
        return [str(row["id"]) for row in rows]
