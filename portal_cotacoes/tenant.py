from flask import g, request, session


DEFAULT_TENANT_ID = "tenant-demo"


def normalize_tenant_id(value: str | None) -> str | None:
    tenant_id = str(value or "").strip()
    return tenant_id or None


def current_tenant_id() -> str | None:
    return normalize_tenant_id(session.get("tenant_id")) or normalize_tenant_id(getattr(g, "tenant_id", None))


def scoped_tenant_id(value: str | None = None) -> str:
    return normalize_tenant_id(value) or current_tenant_id() or DEFAULT_TENANT_ID


def resolve_request_tenant() -> str:
    """Workspace of the current request: session first, then ``X-Tenant-Id``."""
    tenant_id = normalize_tenant_id(session.get("tenant_id"))
    if tenant_id is None:
        # Prototype: allow overriding tenant via header for API clients.
        tenant_id = normalize_tenant_id(request.headers.get("X-Tenant-Id"))
    g.tenant_id = tenant_id or DEFAULT_TENANT_ID
    return g.tenant_id
