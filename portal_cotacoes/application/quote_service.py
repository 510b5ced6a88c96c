from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from portal_cotacoes.core.event_bus import (
    EventBus,
    ProposalDraftSaved,
    ProposalSent,
    QuoteCreated,
    QuoteDispatched,
    QuoteReceivingStarted,
    VisitConfirmed,
    VisitScheduled,
    get_event_bus,
)
from portal_cotacoes.domain.contracts import (
    ProposalDefaults,
    ProposalInput,
    ProposalTerms,
    QuoteCreateInput,
    ServiceOutput,
    VisitConfirmInput,
    VisitRescheduleInput,
    VisitScheduleInput,
)
from portal_cotacoes.infrastructure.repositories import (
    ClientRepository,
    QuoteRepository,
    QuoteResponseRepository,
    QuoteVisitRepository,
    StatusEventRepository,
    SupplierRepository,
)
from portal_cotacoes.observability import (
    observe_draft_saved,
    observe_proposal_rejected,
    observe_proposal_sent,
    observe_quote_status_advance_failed,
)
from portal_cotacoes.quotes.cache import KeyedTTLCache, cache_key
from portal_cotacoes.quotes.flow_policy import (
    build_process_steps,
    flow_meta,
    stage_for_quote_status,
    supplier_flow_meta,
)
from portal_cotacoes.quotes.lifecycle import (
    SUPPLIER_SCOPES,
    VISIT_NONE,
    can_transition_visit,
    derive_supplier_status,
    is_quote_locked_for_suppliers,
    is_response_editable,
    normalize_proposal_items,
    normalize_status,
    parse_timestamp,
    proposal_total,
    quote_visible_to_supplier,
    send_gate_rejection,
    status_after_proposal_sent,
    visit_state,
)
from portal_cotacoes.ui_strings import error_message, success_message, warning_message


ErrFn = Callable[..., str]

_REJECTION_STATUS = {
    "quote_locked": 409,
    "quote_not_open": 409,
    "items_required": 400,
    "valid_items_required": 400,
    "visit_confirmation_required": 409,
    "proposal_already_sent": 409,
    "proposal_locked": 409,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _rejection(code: str, status_code: int, err_fn: ErrFn, **extra: Any) -> ServiceOutput:
    payload: Dict[str, Any] = {"error": code, "message": err_fn(code)}
    payload.update(extra)
    return ServiceOutput(payload=payload, status_code=status_code)


def _optional_int(value: Any) -> int | None:
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _serialize_quote(row: Dict[str, Any]) -> Dict[str, Any]:
    quote = {key: value for key, value in row.items() if not key.startswith("response_")}
    quote["requires_visit"] = bool(quote.get("requires_visit"))
    quote["total"] = float(quote.get("total") or 0)
    return quote


def _serialize_response(row: Dict[str, Any]) -> Dict[str, Any]:
    response = dict(row)
    response["total_amount"] = float(response.get("total_amount") or 0)
    response["shipping_cost"] = float(response.get("shipping_cost") or 0)
    response["supplier_status"] = derive_supplier_status(response.get("status"))
    return response


class QuoteService:
    """Quote lifecycle controller: client quotes, supplier proposals and visits.

    Every mutating operation commits its own writes, then invalidates the
    tenant's cached lists and publishes the matching domain event. Expected
    rejections come back as ``ServiceOutput`` with an ``error`` code; storage
    failures propagate to the caller.
    """

    def __init__(
        self,
        *,
        cache: KeyedTTLCache | None = None,
        event_bus: EventBus | None = None,
        defaults: ProposalDefaults | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.cache = cache or KeyedTTLCache(ttl_seconds=60)
        self.event_bus = event_bus or get_event_bus()
        self.defaults = defaults or ProposalDefaults()
        self._now_fn = now_fn or _utc_now
        self._logger = logging.getLogger("portal_cotacoes.quotes")

    # -- client side -------------------------------------------------------

    def create_quote(
        self,
        db,
        *,
        tenant_id: str,
        create_input: QuoteCreateInput,
        err_fn: ErrFn = error_message,
    ) -> ServiceOutput:
        title = str(create_input.title or "").strip()
        if not title:
            return _rejection("title_required", 400, err_fn)
        if not create_input.client_id:
            return _rejection("client_id_required", 400, err_fn)
        if not ClientRepository(tenant_id=tenant_id).get_by_id(db, create_input.client_id):
            return _rejection("client_not_found", 404, err_fn)

        scope = normalize_status(create_input.supplier_scope) or "all"
        if scope not in SUPPLIER_SCOPES:
            return _rejection("supplier_scope_invalid", 400, err_fn)

        deadline = str(create_input.deadline or "").strip() or None
        visit_deadline = str(create_input.visit_deadline or "").strip() or None
        for raw in (deadline, visit_deadline):
            if raw and parse_timestamp(raw) is None:
                return _rejection("deadline_invalid", 400, err_fn)

        lines = [line for line in normalize_proposal_items(create_input.items) if line.is_valid_for_draft()]
        if not lines:
            return _rejection("quote_items_required", 400, err_fn)

        supplier_repo = SupplierRepository(tenant_id=tenant_id)
        assigned_ids: List[int] = []
        requested_ids = list(create_input.supplier_ids or [])
        if create_input.supplier_id:
            requested_ids.append(create_input.supplier_id)
        for raw_id in requested_ids:
            supplier_id = _optional_int(raw_id)
            if supplier_id is None:
                return _rejection("supplier_id_invalid", 400, err_fn)
            if not supplier_repo.get_by_id(db, supplier_id):
                return _rejection("supplier_not_found", 404, err_fn, supplier_id=supplier_id)
            if supplier_id not in assigned_ids:
                assigned_ids.append(supplier_id)

        quote_repo = QuoteRepository(tenant_id=tenant_id)
        status = "sent" if create_input.send_now else "draft"
        local_code = quote_repo.next_local_code(db, create_input.client_id)
        quote_id = quote_repo.create(
            db,
            client_id=create_input.client_id,
            local_code=local_code,
            title=title,
            description=str(create_input.description or "").strip() or None,
            deadline=deadline,
            total=proposal_total(lines),
            status=status,
            supplier_scope=scope,
            supplier_id=_optional_int(create_input.supplier_id),
            requires_visit=bool(create_input.requires_visit),
            visit_deadline=visit_deadline,
        )
        for line in lines:
            quote_repo.add_item(
                db,
                quote_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price=line.unit_price,
            )
        quote_repo.assign_suppliers(db, quote_id, assigned_ids)
        StatusEventRepository(tenant_id=tenant_id).add_event(
            db,
            entity="quote",
            entity_id=quote_id,
            from_status=None,
            to_status=status,
            reason="quote_created",
        )
        db.commit()
        self.cache.invalidate(tenant_id)

        self.event_bus.publish(
            QuoteCreated(
                tenant_id=tenant_id,
                quote_id=quote_id,
                client_id=create_input.client_id,
                local_code=local_code,
                status=status,
            )
        )
        if status == "sent":
            self.event_bus.publish(QuoteDispatched(tenant_id=tenant_id, quote_id=quote_id, supplier_scope=scope))

        quote = quote_repo.get_by_id(db, quote_id)
        return ServiceOutput(
            payload={
                "quote": self._client_quote_payload(quote),
                "items": quote_repo.list_items(db, quote_id),
                "assigned_supplier_ids": assigned_ids,
                "message": success_message("quote_created"),
            },
            status_code=201,
        )

    def send_quote(self, db, *, tenant_id: str, quote_id: int, err_fn: ErrFn = error_message) -> ServiceOutput:
        quote_repo = QuoteRepository(tenant_id=tenant_id)
        quote = quote_repo.get_by_id(db, quote_id)
        if not quote:
            return _rejection("quote_not_found", 404, err_fn, quote_id=quote_id)
        if not quote_repo.advance_status(db, quote_id, from_statuses=("draft",), to_status="sent"):
            return _rejection("quote_not_draft", 409, err_fn, status=quote["status"])

        StatusEventRepository(tenant_id=tenant_id).add_event(
            db,
            entity="quote",
            entity_id=quote_id,
            from_status="draft",
            to_status="sent",
            reason="quote_dispatched",
        )
        db.commit()
        self.cache.invalidate(tenant_id)
        self.event_bus.publish(
            QuoteDispatched(tenant_id=tenant_id, quote_id=quote_id, supplier_scope=str(quote["supplier_scope"]))
        )
        return ServiceOutput(
            payload={
                "quote": self._client_quote_payload(quote_repo.get_by_id(db, quote_id)),
                "message": success_message("quote_sent"),
            }
        )

    def delete_quote(self, db, *, tenant_id: str, quote_id: int, err_fn: ErrFn = error_message) -> ServiceOutput:
        quote_repo = QuoteRepository(tenant_id=tenant_id)
        quote = quote_repo.get_by_id(db, quote_id)
        if not quote:
            return _rejection("quote_not_found", 404, err_fn, quote_id=quote_id)
        responses = QuoteResponseRepository(tenant_id=tenant_id).count_for_quote(db, quote_id)
        if responses > 0:
            return _rejection("quote_has_responses", 409, err_fn, responses=responses)

        quote_repo.delete_quote(db, quote_id)
        db.commit()
        self.cache.invalidate(tenant_id)
        self._logger.info("quote_deleted", extra={"tenant_id": tenant_id, "quote_id": quote_id})
        return ServiceOutput(
            payload={"deleted": True, "quote_id": quote_id, "message": success_message("quote_deleted")}
        )

    def list_client_quotes(
        self,
        db,
        *,
        tenant_id: str,
        client_id: int | None = None,
        status: str | None = None,
    ) -> ServiceOutput:
        key = cache_key(tenant_id, "client", "quotes", f"{client_id or '*'}:{status or '*'}")
        cached = self.cache.get(key)
        if cached is not None:
            return ServiceOutput(payload=cached)

        rows = QuoteRepository(tenant_id=tenant_id).list_for_client(db, client_id=client_id, status=status)
        items = [self._client_quote_payload(row) for row in rows]
        payload = {"items": items, "count": len(items)}
        self.cache.set(key, payload)
        return ServiceOutput(payload=payload)

    def get_quote_detail(
        self,
        db,
        *,
        tenant_id: str,
        quote_id: int,
        client_id: int | None = None,
        err_fn: ErrFn = error_message,
    ) -> ServiceOutput:
        quote_repo = QuoteRepository(tenant_id=tenant_id)
        quote = quote_repo.get_by_id(db, quote_id)
        if not quote or (client_id is not None and int(quote["client_id"]) != int(client_id)):
            return _rejection("quote_not_found", 404, err_fn, quote_id=quote_id)

        responses = QuoteResponseRepository(tenant_id=tenant_id).list_for_quote(db, quote_id)
        visits = QuoteVisitRepository(tenant_id=tenant_id).list_for_quote(db, quote_id)
        history = StatusEventRepository(tenant_id=tenant_id).list_for_entity(db, entity="quote", entity_id=quote_id)
        return ServiceOutput(
            payload={
                "quote": self._client_quote_payload(quote),
                "items": quote_repo.list_items(db, quote_id),
                "responses": [_serialize_response(row) for row in responses],
                "visits": visits,
                "history": history,
                "process_steps": build_process_steps(stage_for_quote_status(quote["status"])),
            }
        )

    # -- supplier side -----------------------------------------------------

    def list_supplier_quotes(self, db, *, tenant_id: str, supplier_id: int | None) -> ServiceOutput:
        """Quotes visible to the supplier, newest first, with derived status."""
        if supplier_id is None or SupplierRepository(tenant_id=tenant_id).get_by_id(db, supplier_id) is None:
            return ServiceOutput(payload={"items": [], "count": 0})

        key = cache_key(tenant_id, "supplier", "supplier_quotes", supplier_id)
        cached = self.cache.get(key)
        if cached is not None:
            return ServiceOutput(payload=cached)

        rows = QuoteRepository(tenant_id=tenant_id).list_visible_to_supplier(db, supplier_id)
        visits_by_quote: Dict[int, List[dict]] = {}
        for visit in QuoteVisitRepository(tenant_id=tenant_id).list_by_supplier(db, supplier_id):
            visits_by_quote.setdefault(int(visit["quote_id"]), []).append(visit)

        items: List[Dict[str, Any]] = []
        seen: set[int] = set()
        for row in rows:
            quote_id = int(row["id"])
            if quote_id in seen:
                continue
            seen.add(quote_id)
            response_status = row.get("response_status") if row.get("response_id") is not None else None
            items.append(
                self._supplier_quote_payload(
                    row,
                    response_status=response_status,
                    visits=visits_by_quote.get(quote_id, []),
                )
            )

        payload = {"items": items, "count": len(items)}
        self.cache.set(key, payload)
        return ServiceOutput(payload=payload)

    def get_supplier_quote(
        self,
        db,
        *,
        tenant_id: str,
        supplier_id: int,
        quote_id: int,
        err_fn: ErrFn = error_message,
    ) -> ServiceOutput:
        quote, response = self._load_visible_quote(db, tenant_id, supplier_id, quote_id)
        if quote is None:
            return _rejection("quote_not_found", 404, err_fn, quote_id=quote_id)

        visits = QuoteVisitRepository(tenant_id=tenant_id).list_for_supplier(db, quote_id, supplier_id)
        payload = self._supplier_quote_payload(
            quote,
            response_status=response["status"] if response else None,
            visits=visits,
        )
        return ServiceOutput(
            payload={
                "quote": payload,
                "items": QuoteRepository(tenant_id=tenant_id).list_items(db, quote_id),
                "response": _serialize_response(response) if response else None,
                "visits": visits,
                "defaults": {
                    "delivery_time": self.defaults.delivery_time,
                    "payment_terms": self.defaults.payment_terms,
                    "warranty_months": self.defaults.warranty_months,
                    "shipping_cost": 0.0,
                },
            }
        )

    def save_draft(
        self,
        db,
        *,
        tenant_id: str,
        proposal: ProposalInput,
        err_fn: ErrFn = error_message,
    ) -> ServiceOutput:
        quote, _existing = self._load_visible_quote(db, tenant_id, proposal.supplier_id, proposal.quote_id)
        if quote is None:
            return _rejection("quote_not_found", 404, err_fn, quote_id=proposal.quote_id)
        if not isinstance(proposal.items, list) or not proposal.items:
            return self._reject_proposal("items_required", err_fn)

        lines = normalize_proposal_items(proposal.items)
        response_id = self._write_response(
            db,
            tenant_id=tenant_id,
            proposal=proposal,
            lines=lines,
            status="draft",
            sent_at=None,
        )
        if response_id is None:
            return self._reject_proposal("proposal_locked", err_fn)

        db.commit()
        observe_draft_saved()
        self.cache.invalidate(tenant_id)
        self.event_bus.publish(
            ProposalDraftSaved(
                tenant_id=tenant_id,
                quote_id=proposal.quote_id,
                supplier_id=proposal.supplier_id,
                response_id=response_id,
            )
        )
        response = QuoteResponseRepository(tenant_id=tenant_id).get_by_id(db, response_id)
        return ServiceOutput(
            payload={
                "response": _serialize_response(response),
                "supplier_status": derive_supplier_status(response["status"]),
                "message": success_message("draft_saved"),
            }
        )

    def send_proposal(
        self,
        db,
        *,
        tenant_id: str,
        proposal: ProposalInput,
        err_fn: ErrFn = error_message,
    ) -> ServiceOutput:
        """Validate and record a supplier proposal, then move the quote on.

        The response write is committed before the quote advance. A failure
        while advancing the quote is reported as a partial success and never
        undoes the recorded proposal.
        """
        quote, existing = self._load_visible_quote(db, tenant_id, proposal.supplier_id, proposal.quote_id)
        if quote is None:
            return _rejection("quote_not_found", 404, err_fn, quote_id=proposal.quote_id)

        lines = normalize_proposal_items(proposal.items if isinstance(proposal.items, list) else [])
        visits: List[dict] = []
        if quote.get("requires_visit"):
            visits = QuoteVisitRepository(tenant_id=tenant_id).list_for_supplier(
                db, proposal.quote_id, proposal.supplier_id
            )
        rejection = send_gate_rejection(quote, lines, visits)
        if rejection:
            return self._reject_proposal(rejection, err_fn)
        if existing and not is_response_editable(existing.get("status")):
            return self._reject_proposal("proposal_already_sent", err_fn)

        response_id = self._write_response(
            db,
            tenant_id=tenant_id,
            proposal=proposal,
            lines=lines,
            status="sent",
            sent_at=_iso(self._now_fn()),
        )
        if response_id is None:
            return self._reject_proposal("proposal_already_sent", err_fn)
        StatusEventRepository(tenant_id=tenant_id).add_event(
            db,
            entity="quote_response",
            entity_id=response_id,
            from_status=existing.get("status") if existing else None,
            to_status="sent",
            reason="proposal_sent",
        )
        db.commit()
        observe_proposal_sent()

        advanced, quote_status = self._advance_quote_after_send(db, tenant_id, quote)
        self.cache.invalidate(tenant_id)

        response = QuoteResponseRepository(tenant_id=tenant_id).get_by_id(db, response_id)
        self.event_bus.publish(
            ProposalSent(
                tenant_id=tenant_id,
                quote_id=proposal.quote_id,
                supplier_id=proposal.supplier_id,
                response_id=response_id,
                total_amount=float(response["total_amount"] or 0),
            )
        )
        self._logger.info(
            "proposal_sent",
            extra={
                "tenant_id": tenant_id,
                "quote_id": proposal.quote_id,
                "supplier_id": proposal.supplier_id,
                "response_id": response_id,
                "quote_status_advanced": advanced,
            },
        )

        payload: Dict[str, Any] = {
            "response": _serialize_response(response),
            "supplier_status": derive_supplier_status(response["status"]),
            "quote_status": quote_status,
            "quote_status_advanced": advanced,
            "message": success_message("proposal_sent" if advanced else "proposal_sent_partial"),
        }
        if not advanced:
            payload["warnings"] = ["quote_status_not_advanced"]
            payload["warning_messages"] = [warning_message("quote_status_not_advanced")]
        return ServiceOutput(payload=payload)

    # -- visits ------------------------------------------------------------

    def list_visits(
        self,
        db,
        *,
        tenant_id: str,
        quote_id: int,
        supplier_id: int | None = None,
        err_fn: ErrFn = error_message,
    ) -> ServiceOutput:
        visit_repo = QuoteVisitRepository(tenant_id=tenant_id)
        if supplier_id is not None:
            quote, _response = self._load_visible_quote(db, tenant_id, supplier_id, quote_id)
            if quote is None:
                return _rejection("quote_not_found", 404, err_fn, quote_id=quote_id)
            visits = visit_repo.list_for_supplier(db, quote_id, supplier_id)
            return ServiceOutput(
                payload={
                    "items": visits,
                    "visit_state": visit_state(visits),
                    "visit_flow": flow_meta("visita", visit_state(visits)),
                }
            )

        if not QuoteRepository(tenant_id=tenant_id).get_by_id(db, quote_id):
            return _rejection("quote_not_found", 404, err_fn, quote_id=quote_id)
        visits = visit_repo.list_for_quote(db, quote_id)
        return ServiceOutput(payload={"items": visits, "count": len(visits)})

    def schedule_visit(
        self,
        db,
        *,
        tenant_id: str,
        visit_input: VisitScheduleInput,
        err_fn: ErrFn = error_message,
    ) -> ServiceOutput:
        quote, _response = self._load_visible_quote(db, tenant_id, visit_input.supplier_id, visit_input.quote_id)
        if quote is None:
            return _rejection("quote_not_found", 404, err_fn, quote_id=visit_input.quote_id)
        if not quote.get("requires_visit"):
            return _rejection("visit_not_required", 400, err_fn)
        if is_quote_locked_for_suppliers(quote["status"]):
            return _rejection("quote_locked", 409, err_fn)
        if parse_timestamp(visit_input.scheduled_date) is None:
            return _rejection("scheduled_date_invalid", 400, err_fn)

        visit_repo = QuoteVisitRepository(tenant_id=tenant_id)
        current_state = visit_state(visit_repo.list_for_supplier(db, visit_input.quote_id, visit_input.supplier_id))
        if current_state == "confirmed":
            return _rejection("visit_already_confirmed", 409, err_fn)
        if not can_transition_visit(current_state, "scheduled"):
            return _rejection("visit_already_scheduled", 409, err_fn, visit_state=current_state)

        visit_id = visit_repo.create(
            db,
            quote_id=visit_input.quote_id,
            supplier_id=visit_input.supplier_id,
            client_id=quote.get("client_id"),
            scheduled_date=str(visit_input.scheduled_date).strip(),
            notes=str(visit_input.notes or "").strip() or None,
        )
        StatusEventRepository(tenant_id=tenant_id).add_event(
            db,
            entity="quote_visit",
            entity_id=visit_id,
            from_status=None if current_state == VISIT_NONE else current_state,
            to_status="scheduled",
            reason="visit_scheduled",
        )
        db.commit()
        self.cache.invalidate(tenant_id)

        visit = visit_repo.get_by_id(db, visit_id)
        self.event_bus.publish(
            VisitScheduled(
                tenant_id=tenant_id,
                quote_id=visit_input.quote_id,
                supplier_id=visit_input.supplier_id,
                visit_id=visit_id,
                scheduled_date=str(visit["scheduled_date"]),
            )
        )
        return ServiceOutput(
            payload={"visit": visit, "visit_state": "scheduled", "message": success_message("visit_scheduled")},
            status_code=201,
        )

    def reschedule_visit(
        self,
        db,
        *,
        tenant_id: str,
        reschedule_input: VisitRescheduleInput,
        supplier_id: int | None = None,
        err_fn: ErrFn = error_message,
    ) -> ServiceOutput:
        visit_repo = QuoteVisitRepository(tenant_id=tenant_id)
        visit = visit_repo.get_by_id(db, reschedule_input.visit_id)
        if not visit or (supplier_id is not None and int(visit["supplier_id"]) != int(supplier_id)):
            return _rejection("visit_not_found", 404, err_fn)
        if not can_transition_visit(visit["status"], "scheduled"):
            return _rejection("visit_transition_invalid", 409, err_fn, visit_status=visit["status"])
        if parse_timestamp(reschedule_input.scheduled_date) is None:
            return _rejection("scheduled_date_invalid", 400, err_fn)
        quote = QuoteRepository(tenant_id=tenant_id).get_by_id(db, int(visit["quote_id"]))
        if quote and is_quote_locked_for_suppliers(quote["status"]):
            return _rejection("quote_locked", 409, err_fn)

        reason = str(reschedule_input.reason or "").strip() or None
        if not visit_repo.reschedule(
            db,
            reschedule_input.visit_id,
            scheduled_date=str(reschedule_input.scheduled_date).strip(),
            reason=reason,
        ):
            return _rejection("visit_transition_invalid", 409, err_fn, visit_status=visit["status"])
        StatusEventRepository(tenant_id=tenant_id).add_event(
            db,
            entity="quote_visit",
            entity_id=reschedule_input.visit_id,
            from_status=visit["status"],
            to_status="scheduled",
            reason=reason or "visit_rescheduled",
        )
        db.commit()
        self.cache.invalidate(tenant_id)

        updated = visit_repo.get_by_id(db, reschedule_input.visit_id)
        self.event_bus.publish(
            VisitScheduled(
                tenant_id=tenant_id,
                quote_id=int(updated["quote_id"]),
                supplier_id=int(updated["supplier_id"]),
                visit_id=reschedule_input.visit_id,
                scheduled_date=str(updated["scheduled_date"]),
                rescheduled=True,
            )
        )
        return ServiceOutput(payload={"visit": updated, "message": success_message("visit_rescheduled")})

    def confirm_visit(
        self,
        db,
        *,
        tenant_id: str,
        confirm_input: VisitConfirmInput,
        client_id: int | None = None,
        err_fn: ErrFn = error_message,
    ) -> ServiceOutput:
        visit_repo = QuoteVisitRepository(tenant_id=tenant_id)
        visit = visit_repo.get_by_id(db, confirm_input.visit_id)
        if not visit:
            return _rejection("visit_not_found", 404, err_fn)
        if client_id is not None:
            quote = QuoteRepository(tenant_id=tenant_id).get_by_id(db, int(visit["quote_id"]))
            if not quote or int(quote["client_id"]) != int(client_id):
                return _rejection("visit_not_found", 404, err_fn)
        if not can_transition_visit(visit["status"], "confirmed"):
            return _rejection("visit_transition_invalid", 409, err_fn, visit_status=visit["status"])

        if not visit_repo.confirm(
            db,
            confirm_input.visit_id,
            confirmed_date=_iso(self._now_fn()),
            confirmed_by=str(confirm_input.confirmed_by or "").strip() or None,
            notes=str(confirm_input.notes or "").strip() or None,
        ):
            return _rejection("visit_transition_invalid", 409, err_fn, visit_status=visit["status"])
        StatusEventRepository(tenant_id=tenant_id).add_event(
            db,
            entity="quote_visit",
            entity_id=confirm_input.visit_id,
            from_status=visit["status"],
            to_status="confirmed",
            reason="visit_confirmed",
        )
        db.commit()
        self.cache.invalidate(tenant_id)

        self.event_bus.publish(
            VisitConfirmed(
                tenant_id=tenant_id,
                quote_id=int(visit["quote_id"]),
                supplier_id=int(visit["supplier_id"]),
                visit_id=confirm_input.visit_id,
            )
        )
        return ServiceOutput(
            payload={
                "visit": visit_repo.get_by_id(db, confirm_input.visit_id),
                "message": success_message("visit_confirmed"),
            }
        )

    # -- internals ---------------------------------------------------------

    def _load_visible_quote(
        self,
        db,
        tenant_id: str,
        supplier_id: int,
        quote_id: int,
    ) -> tuple[dict | None, dict | None]:
        if SupplierRepository(tenant_id=tenant_id).get_by_id(db, supplier_id) is None:
            return None, None
        quote_repo = QuoteRepository(tenant_id=tenant_id)
        quote = quote_repo.get_by_id(db, quote_id)
        if not quote:
            return None, None
        response = QuoteResponseRepository(tenant_id=tenant_id).find_for_supplier(db, quote_id, supplier_id)
        visible = quote_visible_to_supplier(
            quote,
            has_response=response is not None,
            assigned=response is None and quote_repo.is_assigned(db, quote_id, supplier_id),
        )
        if not visible:
            return None, None
        return quote, response

    def _resolve_terms(self, terms: ProposalTerms) -> Dict[str, Any]:
        delivery_time = terms.delivery_time if terms.delivery_time is not None else self.defaults.delivery_time
        warranty = terms.warranty_months if terms.warranty_months is not None else self.defaults.warranty_months
        return {
            "delivery_time": int(delivery_time),
            "payment_terms": str(terms.payment_terms or "").strip() or self.defaults.payment_terms,
            "shipping_cost": max(0.0, float(terms.shipping_cost or 0)),
            "warranty_months": int(warranty),
            "notes": str(terms.notes or "").strip() or None,
        }

    def _write_response(
        self,
        db,
        *,
        tenant_id: str,
        proposal: ProposalInput,
        lines,
        status: str,
        sent_at: str | None,
    ) -> int | None:
        supplier = SupplierRepository(tenant_id=tenant_id).get_by_id(db, proposal.supplier_id)
        return QuoteResponseRepository(tenant_id=tenant_id).upsert(
            db,
            quote_id=proposal.quote_id,
            supplier_id=proposal.supplier_id,
            supplier_name=supplier["name"] if supplier else None,
            items=[line.to_payload() for line in lines],
            total_amount=proposal_total(lines),
            status=status,
            sent_at=sent_at,
            **self._resolve_terms(proposal.terms),
        )

    def _advance_quote_after_send(self, db, tenant_id: str, quote: Dict[str, Any]) -> tuple[bool, str]:
        quote_id = int(quote["id"])
        current_status = str(quote["status"])
        target = status_after_proposal_sent(current_status)
        if target is None:
            return True, current_status
        try:
            moved = QuoteRepository(tenant_id=tenant_id).advance_status(
                db,
                quote_id,
                from_statuses=(current_status,),
                to_status=target,
            )
            if moved:
                StatusEventRepository(tenant_id=tenant_id).add_event(
                    db,
                    entity="quote",
                    entity_id=quote_id,
                    from_status=current_status,
                    to_status=target,
                    reason="first_proposal_received",
                )
            db.commit()
        except Exception:  # noqa: BLE001
            db.rollback()
            observe_quote_status_advance_failed()
            self._logger.warning(
                "quote_status_advance_failed",
                extra={"tenant_id": tenant_id, "quote_id": quote_id, "from_status": current_status},
                exc_info=True,
            )
            return False, current_status

        if moved:
            self.event_bus.publish(QuoteReceivingStarted(tenant_id=tenant_id, quote_id=quote_id))
            return True, target
        refreshed = QuoteRepository(tenant_id=tenant_id).get_by_id(db, quote_id)
        return True, str(refreshed["status"]) if refreshed else current_status

    def _reject_proposal(self, code: str, err_fn: ErrFn) -> ServiceOutput:
        observe_proposal_rejected(code)
        return _rejection(code, _REJECTION_STATUS.get(code, 400), err_fn)

    def _client_quote_payload(self, row: Dict[str, Any]) -> Dict[str, Any]:
        quote = _serialize_quote(row)
        quote["flow"] = flow_meta("cotacao", quote.get("status"))
        quote["stage"] = stage_for_quote_status(quote.get("status"))
        return quote

    def _supplier_quote_payload(
        self,
        row: Dict[str, Any],
        *,
        response_status: str | None,
        visits: List[dict],
    ) -> Dict[str, Any]:
        quote = _serialize_quote(row)
        supplier_status = derive_supplier_status(response_status)
        locked = is_quote_locked_for_suppliers(quote.get("status"))
        current_visit_state = visit_state(visits) if quote["requires_visit"] else VISIT_NONE
        quote.update(
            {
                "supplier_status": supplier_status,
                "response_id": row.get("response_id"),
                "response_status": response_status,
                "quote_locked": locked,
                "visit_state": current_visit_state,
                "flow": supplier_flow_meta(
                    supplier_status,
                    quote_locked=locked,
                    requires_visit=quote["requires_visit"],
                    visit_state=current_visit_state,
                ),
            }
        )
        return quote
