from __future__ import annotations

from typing import Dict, FrozenSet

from flask import session

from zen_platform.errors import PermissionError as AppPermissionError


ORDERING_READ = "ordering:read"
ORDERING_WRITE = "ordering:write"

# Sem sessao autenticada o acesso e somente leitura.
DEFAULT_ROLE = "viewer"

# Papel -> permissoes. Quem so visualiza nao reordena listas.
ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    "admin": frozenset({ORDERING_READ, ORDERING_WRITE}),
    "manager": frozenset({ORDERING_READ, ORDERING_WRITE}),
    "agent": frozenset({ORDERING_READ, ORDERING_WRITE}),
    "viewer": frozenset({ORDERING_READ}),
}


def normalize_role(role: str | None, default: str = DEFAULT_ROLE) -> str:
    normalized = str(role or "").strip().lower()
    if normalized in ROLE_PERMISSIONS:
        return normalized
    return default if default in ROLE_PERMISSIONS else ""


def current_role() -> str:
    return normalize_role(session.get("user_role"))


def permissions_for(role: str | None) -> FrozenSet[str]:
    return ROLE_PERMISSIONS.get(normalize_role(role, default=""), frozenset())


def require_permission(permission: str, *, role: str | None = None) -> str:
    """Return the effective role, or raise 403 when it lacks the permission."""
    effective_role = normalize_role(role) if role is not None else current_role()
    if permission in permissions_for(effective_role):
        return effective_role
    raise AppPermissionError(
        code="permission_denied",
        message_key="permission_denied",
        http_status=403,
        critical=False,
        payload={"required_permission": permission},
    )
