from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, TypeVar

from zen_platform.contexts.ordering.domain.collections import Scope, get_collection
from zen_platform.contexts.ordering.domain.ranking import (
    RankPlan,
    assignments_from_ids,
    detect_drift,
    plan_explicit,
    plan_insert,
    plan_move,
    plan_normalization,
    plan_removal,
    validate_rank_assignments,
)
from zen_platform.contexts.ordering.infrastructure.ordered_item_repository import OrderedItemRepository
from zen_platform.db import is_serialization_failure, is_unique_violation
from zen_platform.domain.contracts import MoveItemInput, NormalizationResult, ScopeReport
from zen_platform.errors import (
    AppError,
    ConflictError,
    InvalidRankError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from zen_platform.observability import observe_ordering_conflict, observe_ordering_operation
from zen_platform.ui_strings import success_message


T = TypeVar("T")


class OrderingService:
    """Rank maintenance for every orderable collection.

    Each public mutation is one unit of work: read the scope, plan the new
    ranks in memory, write them inside a single transaction. A concurrent
    writer is detected by the expected-rank guard on every UPDATE and by
    re-counting the scope before commit; the unit of work is then retried
    with a fresh read, at most ``max_conflict_retries`` times.
    """

    def __init__(self, *, max_conflict_retries: int = 1) -> None:
        self._logger = logging.getLogger("zen_platform")
        self.max_conflict_retries = max(0, int(max_conflict_retries))

    # -- scope resolution -------------------------------------------------

    @staticmethod
    def repository_for(collection_key: str, tenant_id: str) -> OrderedItemRepository:
        collection = get_collection(collection_key)
        if collection is None:
            raise NotFoundError(
                code="collection_not_found",
                message_key="collection_not_found",
                payload={"collection": str(collection_key or "")},
            )
        return OrderedItemRepository(collection, tenant_id=tenant_id)

    def scope_for(self, db, collection_key: str, tenant_id: str, parent_id: str | None = None) -> Scope:
        repository = self.repository_for(collection_key, tenant_id)
        if not repository.collection.is_grouped:
            return repository.scope()
        normalized_parent = str(parent_id or "").strip()
        if not normalized_parent:
            raise ValidationError(
                code="parent_required",
                message_key="parent_required",
                payload={"field": "parent_id"},
            )
        if not repository.parent_exists(db, normalized_parent):
            raise NotFoundError(
                code="parent_not_found",
                message_key="parent_not_found",
                payload={"parent_id": normalized_parent},
            )
        return repository.scope(parent_id=normalized_parent)

    @staticmethod
    def _repository(scope: Scope) -> OrderedItemRepository:
        return OrderedItemRepository(scope.collection, tenant_id=scope.tenant_id)

    # -- unit of work -----------------------------------------------------

    def _run(self, db, *, operation: str, collection: str, work: Callable[[], T]) -> T:
        attempts = 1 + self.max_conflict_retries
        started = time.perf_counter()
        for attempt in range(1, attempts + 1):
            try:
                with db.transaction():
                    result = work()
            except ConflictError as exc:
                self._on_conflict(exc, operation=operation, collection=collection, attempt=attempt, attempts=attempts)
                continue
            except PersistenceError as exc:
                observe_ordering_operation(operation, collection, "failed", duration_ms=_elapsed_ms(started))
                self._logger.error(
                    "ordering_persistence_failed",
                    extra={
                        "operation": operation,
                        "collection": collection,
                        "failed_item_id": exc.failed_item_id,
                        "error": exc.details,
                    },
                )
                raise
            except AppError:
                observe_ordering_operation(operation, collection, "rejected", duration_ms=_elapsed_ms(started))
                raise
            except Exception as exc:
                if is_serialization_failure(exc):
                    conflict = ConflictError(details=str(exc))
                    self._on_conflict(conflict, operation=operation, collection=collection, attempt=attempt, attempts=attempts)
                    continue
                observe_ordering_operation(operation, collection, "failed", duration_ms=_elapsed_ms(started))
                self._logger.error(
                    "ordering_persistence_failed",
                    extra={"operation": operation, "collection": collection, "error": str(exc)},
                )
                raise PersistenceError(details=str(exc)) from exc

            rows = getattr(result, "changed_count", 0) if result is not None else 0
            observe_ordering_operation(
                operation,
                collection,
                "success",
                rows_rewritten=int(rows or 0),
                duration_ms=_elapsed_ms(started),
            )
            return result
        raise RuntimeError("unreachable")  # pragma: no cover

    def _on_conflict(self, exc: ConflictError, *, operation: str, collection: str, attempt: int, attempts: int) -> None:
        observe_ordering_conflict(collection)
        if attempt >= attempts:
            observe_ordering_operation(operation, collection, "conflict")
            self._logger.warning(
                "ordering_conflict",
                extra={"operation": operation, "collection": collection, "attempts": attempts, "error": exc.details},
            )
            raise exc
        self._logger.info(
            "ordering_conflict_retry",
            extra={"operation": operation, "collection": collection, "attempt": attempt},
        )

    def _apply_plan(self, db, repository: OrderedItemRepository, plan: RankPlan, *, skip: set[str] | None = None) -> int:
        written = 0
        for change in plan.changes:
            if skip and change.item_id in skip:
                continue
            try:
                affected = repository.update_rank(
                    db,
                    change.item_id,
                    change.new_rank,
                    expected_rank=change.old_rank,
                )
            except Exception as exc:
                if is_serialization_failure(exc):
                    raise
                raise PersistenceError(
                    details=str(exc),
                    failed_item_id=change.item_id,
                    payload={"failed_item_id": change.item_id},
                ) from exc
            if affected != 1:
                raise ConflictError(details=f"rank of {change.item_id} changed concurrently")
            written += 1
        return written

    @staticmethod
    def _verify_count(db, repository: OrderedItemRepository, scope: Scope, expected: int) -> None:
        current = repository.count(db, scope)
        if current != expected:
            raise ConflictError(details=f"scope size changed from {expected} to {current}")

    # -- operations -------------------------------------------------------

    def normalize(self, db, scope: Scope) -> NormalizationResult:
        repository = self._repository(scope)

        def work() -> NormalizationResult:
            plan = plan_normalization(repository.find_ranked(db, scope))
            written = self._apply_plan(db, repository, plan)
            self._verify_count(db, repository, scope, plan.count)
            return NormalizationResult(
                success=True,
                normalized_count=plan.count,
                changed_count=written,
                message=success_message("order_normalized", count=plan.count),
            )

        result = self._run(db, operation="normalize", collection=scope.collection.key, work=work)
        self._logger.info(
            "ordering_normalized",
            extra={**scope.describe(), "normalized_count": result.normalized_count, "changed_count": result.changed_count},
        )
        return result

    def move_item(self, db, collection_key: str, tenant_id: str, move: MoveItemInput) -> None:
        repository = self.repository_for(collection_key, tenant_id)
        item_id = str(move.item_id or "").strip()
        if not item_id:
            raise ValidationError(payload={"field": "item_id"})
        new_rank = move.new_rank
        if isinstance(new_rank, bool) or not isinstance(new_rank, int) or new_rank < 1:
            raise InvalidRankError(payload={"field": "rank", "min": 1})
        new_parent_id = str(move.new_parent_id or "").strip() or None
        if new_parent_id and not repository.collection.is_grouped:
            raise ValidationError(payload={"field": "parent_id"})

        def work() -> None:
            row = repository.get_by_id(db, item_id)
            if not row or int(row.get("active") or 0) != 1:
                raise NotFoundError(payload={"item_id": item_id})
            source_scope = repository.scope_of(row)
            if new_parent_id and new_parent_id != source_scope.parent_id:
                self._move_across_parents(db, repository, row, source_scope, new_parent_id, new_rank)
                return
            plan = plan_move(repository.find_ranked(db, source_scope), item_id, new_rank)
            self._apply_plan(db, repository, plan)
            self._verify_count(db, repository, source_scope, plan.count)

        self._run(db, operation="move", collection=repository.collection.key, work=work)
        self._logger.info(
            "ordering_item_moved",
            extra={
                "collection": repository.collection.key,
                "tenant_id": repository.tenant_id,
                "item_id": item_id,
                "new_rank": new_rank,
                "new_parent_id": new_parent_id,
            },
        )

    def _move_across_parents(
        self,
        db,
        repository: OrderedItemRepository,
        row: dict,
        source_scope: Scope,
        new_parent_id: str,
        new_rank: int,
    ) -> None:
        if not repository.parent_exists(db, new_parent_id):
            raise NotFoundError(
                code="parent_not_found",
                message_key="parent_not_found",
                payload={"parent_id": new_parent_id},
            )
        item_id = str(row["id"])
        target_scope = repository.scope(parent_id=new_parent_id)
        moving = repository.to_ranked_item(row)

        target_plan = plan_insert(repository.find_ranked(db, target_scope), moving, new_rank)
        source_plan = plan_removal(repository.find_ranked(db, source_scope), item_id)

        if repository.move_parent(db, item_id, new_parent_id, target_plan.rank_of(item_id)) != 1:
            raise ConflictError(details=f"item {item_id} changed concurrently")
        self._apply_plan(db, repository, source_plan)
        self._apply_plan(db, repository, target_plan, skip={item_id})
        self._verify_count(db, repository, source_scope, source_plan.count)
        self._verify_count(db, repository, target_scope, target_plan.count)

    def apply_ranks(self, db, scope: Scope, assignments: Any) -> NormalizationResult:
        repository = self._repository(scope)

        def work() -> NormalizationResult:
            items = repository.find_ranked(db, scope)
            ranks_by_id = validate_rank_assignments(assignments, [item.id for item in items])
            plan = plan_explicit(items, ranks_by_id)
            written = self._apply_plan(db, repository, plan)
            self._verify_count(db, repository, scope, plan.count)
            return NormalizationResult(
                success=True,
                normalized_count=plan.count,
                changed_count=written,
                message=success_message("order_updated", count=plan.count),
            )

        result = self._run(db, operation="reorder", collection=scope.collection.key, work=work)
        self._logger.info(
            "ordering_reordered",
            extra={**scope.describe(), "normalized_count": result.normalized_count, "changed_count": result.changed_count},
        )
        return result

    def reorder(self, db, scope: Scope, ordered_ids: Any) -> NormalizationResult:
        return self.apply_ranks(db, scope, assignments_from_ids(ordered_ids))

    def append_item(self, db, scope: Scope, *, name: Any, item_id: str | None = None, created_at: str | None = None) -> dict:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(payload={"field": "name"})
        repository = self._repository(scope)
        requested_id = str(item_id or "").strip() or None

        def work() -> dict:
            # Ids sao unicos na tabela inteira; a resposta nao diz de qual tenant.
            if requested_id and repository.id_exists(db, requested_id):
                raise _item_already_exists()
            # Itens sem ordem ficam no fim; normaliza antes para o novo ser o ultimo.
            plan = plan_normalization(repository.find_ranked(db, scope))
            self._apply_plan(db, repository, plan)
            try:
                new_id = repository.create(
                    db,
                    name=name.strip(),
                    rank=plan.count + 1,
                    parent_id=scope.parent_id,
                    item_id=requested_id,
                    created_at=created_at,
                )
            except Exception as exc:
                if is_unique_violation(exc):
                    raise _item_already_exists() from exc
                raise
            self._verify_count(db, repository, scope, plan.count + 1)
            return repository.get_by_id(db, new_id) or {"id": new_id}

        return self._run(db, operation="append", collection=scope.collection.key, work=work)

    def remove_item(self, db, collection_key: str, tenant_id: str, item_id: str) -> NormalizationResult:
        repository = self.repository_for(collection_key, tenant_id)
        normalized_id = str(item_id or "").strip()

        def work() -> NormalizationResult:
            row = repository.get_by_id(db, normalized_id)
            if not row or int(row.get("active") or 0) != 1:
                raise NotFoundError(payload={"item_id": normalized_id})
            scope = repository.scope_of(row)
            items = repository.find_ranked(db, scope)
            if repository.deactivate(db, normalized_id) != 1:
                raise ConflictError(details=f"item {normalized_id} changed concurrently")
            plan = plan_removal(items, normalized_id)
            written = self._apply_plan(db, repository, plan)
            self._verify_count(db, repository, scope, plan.count)
            return NormalizationResult(
                success=True,
                normalized_count=plan.count,
                changed_count=written,
                message=success_message("item_removed", count=plan.count),
            )

        return self._run(db, operation="remove", collection=repository.collection.key, work=work)

    def list_items(self, db, scope: Scope) -> List[dict]:
        repository = self._repository(scope)
        parent_column = scope.collection.parent_column
        return [
            {
                "id": str(row["id"]),
                "name": row.get("name"),
                "rank": row.get(scope.collection.rank_column),
                "parent_id": row.get(parent_column) if parent_column else None,
                "created_at": row.get(scope.collection.tiebreak_column),
            }
            for row in repository.find_many(db, scope)
        ]

    def inspect_scope(self, db, scope: Scope) -> ScopeReport:
        repository = self._repository(scope)
        drift = detect_drift(repository.find_ranked(db, scope))
        return ScopeReport(
            scope=scope.describe(),
            items=self.list_items(db, scope),
            count=drift.count,
            gaps=drift.gaps,
            duplicates=drift.duplicates,
            unranked=drift.unranked,
            is_normalized=drift.is_normalized,
        )


def _item_already_exists() -> ValidationError:
    return ValidationError(
        code="item_already_exists",
        message_key="item_already_exists",
        payload={"field": "id"},
    )


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0
