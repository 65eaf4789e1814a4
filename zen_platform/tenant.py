from flask import g, has_request_context, session


DEFAULT_TENANT_ID = "tenant-demo"


def normalize_tenant_id(value: str | None) -> str | None:
    tenant_id = str(value or "").strip()
    return tenant_id or None


def resolve_request_tenant() -> str:
    """Tenant of the current request, taken only from the signed session."""
    return normalize_tenant_id(session.get("tenant_id")) or DEFAULT_TENANT_ID


def bind_request_tenant() -> None:
    g.tenant_id = resolve_request_tenant()


def current_tenant_id() -> str | None:
    if not has_request_context():
        return normalize_tenant_id(getattr(g, "tenant_id", None))
    return normalize_tenant_id(session.get("tenant_id")) or normalize_tenant_id(getattr(g, "tenant_id", None))


def scoped_tenant_id(value: str | None = None) -> str:
    return normalize_tenant_id(value) or current_tenant_id() or DEFAULT_TENANT_ID
