from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from zen_platform.contexts.ordering.application.service import OrderingService
from zen_platform.contexts.ordering.domain.collections import COLLECTIONS
from zen_platform.db import get_db, get_read_db
from zen_platform.domain.contracts import MoveItemInput
from zen_platform.errors import ValidationError
from zen_platform.policies import ORDERING_READ, ORDERING_WRITE, require_permission
from zen_platform.tenant import scoped_tenant_id
from zen_platform.ui_strings import collection_label, success_message


ordering_bp = Blueprint("ordering", __name__, url_prefix="/api/ordering")


def _service() -> OrderingService:
    return OrderingService(max_conflict_retries=int(current_app.config.get("ORDERING_CONFLICT_RETRIES", 1)))


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError(
            code="validation_error",
            message_key="action_invalid",
            http_status=400,
            critical=False,
        )
    return body


def _optional_string(payload: dict, field_name: str) -> str | None:
    value = payload.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(
            code="validation_error",
            message_key="action_invalid",
            http_status=400,
            critical=False,
            payload={"field": field_name},
        )
    normalized = value.strip()
    return normalized or None


def _parent_id(body: dict | None = None) -> str | None:
    from_body = _optional_string(body or {}, "parent_id")
    return from_body or (request.args.get("parent_id") or "").strip() or None


@ordering_bp.route("/collections", methods=["GET"])
def list_collections_http():
    require_permission(ORDERING_READ)
    return jsonify(
        {
            "collections": [
                {
                    "key": collection.key,
                    "label": collection_label(collection.key),
                    "grouped": collection.is_grouped,
                    "parent_collection": collection.parent_collection,
                }
                for collection in COLLECTIONS.values()
            ]
        }
    )


@ordering_bp.route("/<collection>", methods=["GET"])
def list_items_http(collection: str):
    require_permission(ORDERING_READ)
    db = get_read_db()
    service = _service()
    scope = service.scope_for(db, collection, scoped_tenant_id(), _parent_id())
    return jsonify(
        {
            "collection": scope.collection.key,
            "label": collection_label(scope.collection.key),
            "scope": scope.describe(),
            "items": service.list_items(db, scope),
        }
    )


@ordering_bp.route("/<collection>/inspect", methods=["GET"])
def inspect_scope_http(collection: str):
    require_permission(ORDERING_READ)
    db = get_read_db()
    service = _service()
    scope = service.scope_for(db, collection, scoped_tenant_id(), _parent_id())
    return jsonify(service.inspect_scope(db, scope).to_payload())


@ordering_bp.route("/<collection>/normalize", methods=["POST"])
def normalize_http(collection: str):
    require_permission(ORDERING_WRITE)
    body = _json_body()
    db = get_db()
    service = _service()
    scope = service.scope_for(db, collection, scoped_tenant_id(), _parent_id(body))
    result = service.normalize(db, scope)
    return jsonify(result.to_payload())


@ordering_bp.route("/<collection>/items", methods=["POST"])
def create_item_http(collection: str):
    require_permission(ORDERING_WRITE)
    body = _json_body()
    db = get_db()
    service = _service()
    scope = service.scope_for(db, collection, scoped_tenant_id(), _parent_id(body))
    item = service.append_item(
        db,
        scope,
        name=body.get("name"),
        item_id=_optional_string(body, "id"),
    )
    return jsonify({"item": item, "message": success_message("item_created")}), 201


@ordering_bp.route("/<collection>/items/<item_id>/move", methods=["POST"])
def move_item_http(collection: str, item_id: str):
    require_permission(ORDERING_WRITE)
    body = _json_body()
    _service().move_item(
        get_db(),
        collection,
        scoped_tenant_id(),
        MoveItemInput(
            item_id=item_id,
            new_rank=body.get("rank"),
            new_parent_id=_optional_string(body, "parent_id"),
        ),
    )
    return "", 204


@ordering_bp.route("/<collection>/order", methods=["PUT"])
def reorder_http(collection: str):
    require_permission(ORDERING_WRITE)
    body = _json_body()
    db = get_db()
    service = _service()
    scope = service.scope_for(db, collection, scoped_tenant_id(), _parent_id(body))
    if "items" in body:
        result = service.apply_ranks(db, scope, body.get("items"))
    else:
        result = service.reorder(db, scope, body.get("ids"))
    return jsonify(result.to_payload())


@ordering_bp.route("/<collection>/items/<item_id>", methods=["DELETE"])
def remove_item_http(collection: str, item_id: str):
    require_permission(ORDERING_WRITE)
    result = _service().remove_item(get_db(), collection, scoped_tenant_id(), item_id)
    return jsonify(result.to_payload())
