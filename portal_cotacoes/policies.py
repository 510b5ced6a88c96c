from __future__ import annotations

from typing import Iterable, Set

from flask import request, session

from portal_cotacoes.domain.contracts import SupplierIdentity
from portal_cotacoes.errors import PermissionError as AppPermissionError
from portal_cotacoes.infrastructure.repositories import ClientRepository, SupplierRepository


VALID_ROLES: Set[str] = {"client", "supplier", "admin"}
DEFAULT_ROLE = "client"


def normalize_role(role: str | None, default: str = DEFAULT_ROLE) -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def current_role() -> str:
    raw = session.get("user_role") or request.headers.get("X-User-Role")
    return normalize_role(raw)


def normalize_allowed_roles(roles: Iterable[str]) -> Set[str]:
    allowed: Set[str] = set()
    for role in roles:
        normalized = normalize_role(role, default="")
        if normalized:
            allowed.add(normalized)
    return allowed


def has_any_role(role: str | None, allowed_roles: Iterable[str]) -> bool:
    allowed = normalize_allowed_roles(allowed_roles)
    return not allowed or normalize_role(role) in allowed


def require_roles(*allowed_roles: str, role: str | None = None) -> str:
    normalized_role = normalize_role(role) if role is not None else current_role()
    if has_any_role(normalized_role, allowed_roles):
        return normalized_role
    raise AppPermissionError(details=f"role {normalized_role} not in {sorted(allowed_roles)}")


def _parse_id(value: object) -> int | None:
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def _current_user_email() -> str:
    return str(session.get("user_email") or request.headers.get("X-User-Email") or "").strip().lower()


def resolve_supplier_identity(db, tenant_id: str) -> SupplierIdentity | None:
    """Supplier behind the current request, or ``None`` when it cannot be resolved.

    Tries the session, then ``X-Supplier-Id``, then the user e-mail. An id that
    does not belong to the tenant resolves to ``None``.
    """
    repository = SupplierRepository(tenant_id=tenant_id)
    supplier_id = _parse_id(session.get("supplier_id")) or _parse_id(request.headers.get("X-Supplier-Id"))
    if supplier_id is not None:
        row = repository.get_by_id(db, supplier_id)
    else:
        row = repository.get_by_email(db, _current_user_email())
    if not row:
        return None
    return SupplierIdentity(supplier_id=int(row["id"]), name=str(row["name"] or ""), email=row.get("email"))


def resolve_client_id(db, tenant_id: str) -> int | None:
    repository = ClientRepository(tenant_id=tenant_id)
    client_id = _parse_id(session.get("client_id")) or _parse_id(request.headers.get("X-Client-Id"))
    if client_id is not None:
        row = repository.get_by_id(db, client_id)
    else:
        row = repository.get_by_email(db, _current_user_email())
    return int(row["id"]) if row else None
