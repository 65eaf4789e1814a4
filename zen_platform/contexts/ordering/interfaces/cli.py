from __future__ import annotations

import uuid

import click
from flask import Flask

from zen_platform.contexts.ordering.application.service import OrderingService
from zen_platform.contexts.ordering.domain.collections import Scope
from zen_platform.db import get_db
from zen_platform.errors import AppError
from zen_platform.observability import bind_request_id


def _scopes(service: OrderingService, db, collection: str, tenant: str, parent: str | None, all_parents: bool) -> list[Scope]:
    repository = service.repository_for(collection, tenant)
    if repository.collection.is_grouped and all_parents:
        return [repository.scope(parent_id=parent_id) for parent_id in repository.parent_ids(db)]
    return [service.scope_for(db, collection, tenant, parent)]


def _cli_request_id() -> str:
    return f"cli-{uuid.uuid4().hex[:12]}"


def register_ordering_cli(app: Flask) -> None:
    @app.cli.group("ordering")
    def ordering_group() -> None:
        """Manutencao da ordem das listas."""

    @ordering_group.command("normalize")
    @click.argument("collection")
    @click.option("--tenant", "tenant_id", required=True, help="Tenant dono da lista.")
    @click.option("--parent", "parent_id", default=None, help="Grupo da lista, para colecoes agrupadas.")
    @click.option("--all-parents", is_flag=True, default=False, help="Normaliza todos os grupos do tenant.")
    def normalize_command(collection: str, tenant_id: str, parent_id: str | None, all_parents: bool) -> None:
        service = OrderingService(max_conflict_retries=int(app.config.get("ORDERING_CONFLICT_RETRIES", 1)))
        db = get_db()
        with bind_request_id(_cli_request_id()):
            try:
                for scope in _scopes(service, db, collection, tenant_id, parent_id, all_parents):
                    result = service.normalize(db, scope)
                    click.echo(
                        f"{scope.collection.key} [{scope.parent_id or '-'}]: {result.normalized_count} itens, "
                        f"{result.changed_count} alterados."
                    )
            except AppError as exc:
                raise click.ClickException(f"{exc.code}: {exc.user_message()}") from exc

    @ordering_group.command("check")
    @click.argument("collection")
    @click.option("--tenant", "tenant_id", required=True, help="Tenant dono da lista.")
    @click.option("--parent", "parent_id", default=None, help="Grupo da lista, para colecoes agrupadas.")
    @click.option("--all-parents", is_flag=True, default=False, help="Verifica todos os grupos do tenant.")
    def check_command(collection: str, tenant_id: str, parent_id: str | None, all_parents: bool) -> None:
        service = OrderingService()
        db = get_db()
        drifted = 0
        try:
            for scope in _scopes(service, db, collection, tenant_id, parent_id, all_parents):
                report = service.inspect_scope(db, scope)
                if not report.is_normalized:
                    drifted += 1
                click.echo(
                    f"{scope.collection.key} [{scope.parent_id or '-'}]: "
                    f"{'ok' if report.is_normalized else 'drift'} "
                    f"count={report.count} gaps={report.gaps} duplicates={report.duplicates} "
                    f"unranked={report.unranked}"
                )
        except AppError as exc:
            raise click.ClickException(f"{exc.code}: {exc.user_message()}") from exc
        if drifted:
            raise click.exceptions.Exit(1)
