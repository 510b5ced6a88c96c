from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from portal_cotacoes.application.quote_service import QuoteService
from portal_cotacoes.db import get_db
from portal_cotacoes.domain.contracts import (
    ProposalInput,
    ProposalTerms,
    QuoteCreateInput,
    SupplierIdentity,
    VisitConfirmInput,
    VisitRescheduleInput,
    VisitScheduleInput,
)
from portal_cotacoes.errors import ClientNotFoundError, SupplierRequiredError
from portal_cotacoes.policies import (
    current_role,
    require_roles,
    resolve_client_id,
    resolve_supplier_identity,
)
from portal_cotacoes.quotes.lifecycle import QUOTE_STATUSES
from portal_cotacoes.tenant import scoped_tenant_id
from portal_cotacoes.ui_strings import error_message


quote_bp = Blueprint("quotes", __name__)

CLIENT_ROLES = ("client", "admin")
SUPPLIER_ROLES = ("supplier", "admin")


def _err(key: str, fallback: str | None = None) -> str:
    return error_message(key, fallback)


def _service() -> QuoteService:
    return current_app.extensions["quote_service"]


def _parse_optional_int(value) -> int | None:
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_optional_float(value) -> float | None:
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _require_supplier(db, tenant_id: str) -> SupplierIdentity:
    identity = resolve_supplier_identity(db, tenant_id)
    if identity is None:
        raise SupplierRequiredError()
    return identity


def _client_scope(db, tenant_id: str) -> int | None:
    """Client the request acts for; admins are not narrowed to one client."""
    client_id = resolve_client_id(db, tenant_id)
    if client_id is None and current_role() != "admin":
        raise ClientNotFoundError()
    return client_id


def _proposal_input(quote_id: int, supplier_id: int, payload: dict) -> ProposalInput:
    terms = ProposalTerms(
        delivery_time=_parse_optional_int(payload.get("delivery_time")),
        payment_terms=(str(payload.get("payment_terms") or "").strip() or None),
        shipping_cost=_parse_optional_float(payload.get("shipping_cost")) or 0.0,
        warranty_months=_parse_optional_int(payload.get("warranty_months")),
        notes=(str(payload.get("notes") or "").strip() or None),
    )
    items = payload.get("items")
    return ProposalInput(
        quote_id=quote_id,
        supplier_id=supplier_id,
        items=items if isinstance(items, list) else [],
        terms=terms,
    )


# -- client ----------------------------------------------------------------


@quote_bp.route("/api/cotacoes", methods=["GET", "POST"])
def cotacoes_api():
    require_roles(*CLIENT_ROLES)
    db = get_db()
    tenant_id = scoped_tenant_id()

    if request.method == "POST":
        payload = request.get_json(silent=True) or {}
        client_id = resolve_client_id(db, tenant_id)
        if current_role() == "admin":
            client_id = _parse_optional_int(payload.get("client_id")) or client_id
        if client_id is None:
            return jsonify({"error": "client_id_required", "message": _err("client_id_required")}), 400

        supplier_ids = payload.get("supplier_ids") if isinstance(payload.get("supplier_ids"), list) else []
        items = payload.get("items") if isinstance(payload.get("items"), list) else []
        if not items:
            return jsonify({"error": "quote_items_required", "message": _err("quote_items_required")}), 400

        result = _service().create_quote(
            db,
            tenant_id=tenant_id,
            create_input=QuoteCreateInput(
                client_id=client_id,
                title=str(payload.get("title") or ""),
                description=payload.get("description"),
                deadline=payload.get("deadline"),
                items=items,
                supplier_scope=str(payload.get("supplier_scope") or "all"),
                supplier_ids=supplier_ids,
                supplier_id=_parse_optional_int(payload.get("supplier_id")),
                requires_visit=bool(payload.get("requires_visit")),
                visit_deadline=payload.get("visit_deadline"),
                send_now=bool(payload.get("send_now")),
            ),
            err_fn=_err,
        )
        return jsonify(result.payload), result.status_code

    status = str(request.args.get("status") or "").strip() or None
    if status and status not in QUOTE_STATUSES:
        return jsonify({"error": "status_invalid", "message": _err("status_invalid")}), 400
    result = _service().list_client_quotes(
        db,
        tenant_id=tenant_id,
        client_id=_client_scope(db, tenant_id),
        status=status,
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("/api/cotacoes/<int:quote_id>", methods=["GET", "DELETE"])
def cotacao_api(quote_id: int):
    require_roles(*CLIENT_ROLES)
    db = get_db()
    tenant_id = scoped_tenant_id()
    client_id = _client_scope(db, tenant_id)

    if request.method == "DELETE":
        detail = _service().get_quote_detail(db, tenant_id=tenant_id, quote_id=quote_id, client_id=client_id, err_fn=_err)
        if detail.status_code != 200:
            return jsonify(detail.payload), detail.status_code
        result = _service().delete_quote(db, tenant_id=tenant_id, quote_id=quote_id, err_fn=_err)
        return jsonify(result.payload), result.status_code

    result = _service().get_quote_detail(db, tenant_id=tenant_id, quote_id=quote_id, client_id=client_id, err_fn=_err)
    return jsonify(result.payload), result.status_code


@quote_bp.route("/api/cotacoes/<int:quote_id>/enviar", methods=["POST"])
def cotacao_enviar_api(quote_id: int):
    require_roles(*CLIENT_ROLES)
    db = get_db()
    tenant_id = scoped_tenant_id()
    client_id = _client_scope(db, tenant_id)

    detail = _service().get_quote_detail(db, tenant_id=tenant_id, quote_id=quote_id, client_id=client_id, err_fn=_err)
    if detail.status_code != 200:
        return jsonify(detail.payload), detail.status_code
    result = _service().send_quote(db, tenant_id=tenant_id, quote_id=quote_id, err_fn=_err)
    return jsonify(result.payload), result.status_code


# -- supplier --------------------------------------------------------------


@quote_bp.route("/api/fornecedor/cotacoes", methods=["GET"])
def fornecedor_cotacoes_api():
    require_roles(*SUPPLIER_ROLES)
    db = get_db()
    tenant_id = scoped_tenant_id()
    identity = resolve_supplier_identity(db, tenant_id)
    result = _service().list_supplier_quotes(
        db,
        tenant_id=tenant_id,
        supplier_id=identity.supplier_id if identity else None,
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("/api/fornecedor/cotacoes/<int:quote_id>", methods=["GET"])
def fornecedor_cotacao_api(quote_id: int):
    require_roles(*SUPPLIER_ROLES)
    db = get_db()
    tenant_id = scoped_tenant_id()
    identity = _require_supplier(db, tenant_id)
    result = _service().get_supplier_quote(
        db,
        tenant_id=tenant_id,
        supplier_id=identity.supplier_id,
        quote_id=quote_id,
        err_fn=_err,
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("/api/fornecedor/cotacoes/<int:quote_id>/rascunho", methods=["PUT"])
def fornecedor_rascunho_api(quote_id: int):
    require_roles(*SUPPLIER_ROLES)
    db = get_db()
    tenant_id = scoped_tenant_id()
    identity = _require_supplier(db, tenant_id)
    payload = request.get_json(silent=True) or {}
    result = _service().save_draft(
        db,
        tenant_id=tenant_id,
        proposal=_proposal_input(quote_id, identity.supplier_id, payload),
        err_fn=_err,
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("/api/fornecedor/cotacoes/<int:quote_id>/proposta", methods=["POST"])
def fornecedor_proposta_api(quote_id: int):
    require_roles(*SUPPLIER_ROLES)
    db = get_db()
    tenant_id = scoped_tenant_id()
    identity = _require_supplier(db, tenant_id)
    payload = request.get_json(silent=True) or {}
    result = _service().send_proposal(
        db,
        tenant_id=tenant_id,
        proposal=_proposal_input(quote_id, identity.supplier_id, payload),
        err_fn=_err,
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("/api/fornecedor/cotacoes/<int:quote_id>/visitas", methods=["GET", "POST"])
def fornecedor_visitas_api(quote_id: int):
    require_roles(*SUPPLIER_ROLES)
    db = get_db()
    tenant_id = scoped_tenant_id()
    identity = _require_supplier(db, tenant_id)

    if request.method == "POST":
        payload = request.get_json(silent=True) or {}
        result = _service().schedule_visit(
            db,
            tenant_id=tenant_id,
            visit_input=VisitScheduleInput(
                quote_id=quote_id,
                supplier_id=identity.supplier_id,
                scheduled_date=str(payload.get("scheduled_date") or ""),
                notes=payload.get("notes"),
            ),
            err_fn=_err,
        )
        return jsonify(result.payload), result.status_code

    result = _service().list_visits(
        db,
        tenant_id=tenant_id,
        quote_id=quote_id,
        supplier_id=identity.supplier_id,
        err_fn=_err,
    )
    return jsonify(result.payload), result.status_code


# -- visits ----------------------------------------------------------------


@quote_bp.route("/api/visitas/<int:visit_id>/reagendar", methods=["POST"])
def visita_reagendar_api(visit_id: int):
    require_roles(*SUPPLIER_ROLES)
    db = get_db()
    tenant_id = scoped_tenant_id()
    supplier_id = None
    if current_role() != "admin":
        supplier_id = _require_supplier(db, tenant_id).supplier_id
    payload = request.get_json(silent=True) or {}
    result = _service().reschedule_visit(
        db,
        tenant_id=tenant_id,
        reschedule_input=VisitRescheduleInput(
            visit_id=visit_id,
            scheduled_date=str(payload.get("scheduled_date") or ""),
            reason=payload.get("reason"),
        ),
        supplier_id=supplier_id,
        err_fn=_err,
    )
    return jsonify(result.payload), result.status_code


@quote_bp.route("/api/visitas/<int:visit_id>/confirmar", methods=["POST"])
def visita_confirmar_api(visit_id: int):
    require_roles(*CLIENT_ROLES)
    db = get_db()
    tenant_id = scoped_tenant_id()
    client_id = _client_scope(db, tenant_id)
    payload = request.get_json(silent=True) or {}
    result = _service().confirm_visit(
        db,
        tenant_id=tenant_id,
        confirm_input=VisitConfirmInput(
            visit_id=visit_id,
            confirmed_by=payload.get("confirmed_by"),
            notes=payload.get("notes"),
        ),
        client_id=client_id,
        err_fn=_err,
    )
    return jsonify(result.payload), result.status_code
