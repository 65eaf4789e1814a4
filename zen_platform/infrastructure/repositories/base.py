from __future__ import annotations

from typing import Any, Iterable


class TenantScopeRequiredError(ValueError):
    """Raised when a repository is instantiated without tenant scope."""


class BaseRepository:
    def __init__(self, *, tenant_id: str | None = None) -> None:
        scope = str(tenant_id or "").strip()
        if not scope:
            raise TenantScopeRequiredError("tenant_id is required for repository access")
        self.tenant_id = scope

    def build_tenant_clause(
        self,
        *,
        table_alias: str | None = None,
        column_name: str = "tenant_id",
    ) -> str:
        prefix = f"{table_alias.strip()}." if table_alias and str(table_alias).strip() else ""
        return f"{prefix}{column_name} = ?"

    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def null_safe_equals(db, column: str) -> str:
        # SQLite aceita "IS ?" para comparar NULL; Postgres precisa do operador padrao.
        backend = str(getattr(db, "backend", "") or "").lower()
        if backend.startswith("postgres"):
            return f"{column} IS NOT DISTINCT FROM ?"
        return f"{column} IS ?"
