"""Quote lifecycle rules shared by the services, the sweep and the API.

Everything in this module is a pure function of its inputs: no database,
no clock, no Flask context. The application layer feeds it the rows it
loaded and acts on the answer.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping


QUOTE_STATUSES = (
    "draft",
    "sent",
    "receiving",
    "received",
    "under_review",
    "pending_approval",
    "approved",
    "paid",
    "delivering",
    "finalized",
    "expired",
)
QUOTE_OPEN_STATUSES = frozenset({"sent", "receiving"})
SUPPLIER_LOCKED_QUOTE_STATUSES = frozenset({"pending_approval", "approved", "paid", "delivering", "finalized"})
# not dispatched yet, or closed by the deadline
QUOTE_CLOSED_TO_PROPOSALS = frozenset({"draft", "expired"})

RESPONSE_STATUSES = ("draft", "pending", "sent", "approved", "rejected", "expired")
EDITABLE_RESPONSE_STATUSES = frozenset({"draft", "pending"})

SUPPLIER_STATUSES = ("pending", "proposal_sent", "approved", "rejected", "expired")
_SUPPLIER_STATUS_BY_RESPONSE = {
    "sent": "proposal_sent",
    "approved": "approved",
    "rejected": "rejected",
    "expired": "expired",
}

SUPPLIER_SCOPES = ("local", "global", "all")
OPEN_SUPPLIER_SCOPES = frozenset({"global", "all"})

VISIT_NONE = "none"
VISIT_STATUSES = ("scheduled", "confirmed", "overdue")
VISIT_TRANSITIONS: Dict[str, frozenset] = {
    VISIT_NONE: frozenset({"scheduled"}),
    "scheduled": frozenset({"confirmed", "overdue"}),
    "overdue": frozenset({"scheduled"}),
    "confirmed": frozenset(),
}


def normalize_status(value: str | None) -> str:
    return str(value or "").strip().lower()


def derive_supplier_status(response_status: str | None) -> str:
    """Status a supplier sees for a quote, given its own response status.

    ``None`` means the supplier has no response row for the quote.
    """
    if response_status is None:
        return "pending"
    return _SUPPLIER_STATUS_BY_RESPONSE.get(normalize_status(response_status), "pending")


def is_quote_locked_for_suppliers(quote_status: str | None) -> bool:
    return normalize_status(quote_status) in SUPPLIER_LOCKED_QUOTE_STATUSES


def is_quote_open_for_proposals(quote_status: str | None) -> bool:
    status = normalize_status(quote_status)
    return status not in SUPPLIER_LOCKED_QUOTE_STATUSES and status not in QUOTE_CLOSED_TO_PROPOSALS


def is_response_editable(response_status: str | None) -> bool:
    if response_status is None:
        return True
    return normalize_status(response_status) in EDITABLE_RESPONSE_STATUSES


def _parse_number(value: Any) -> float:
    if value in (None, "") or isinstance(value, bool):
        return 0.0
    try:
        parsed = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


@dataclass(frozen=True)
class ProposalLine:
    product_name: str
    quantity: float
    unit_price: float
    notes: str | None = None

    @property
    def total(self) -> float:
        return round(self.quantity * self.unit_price, 2)

    def is_valid_for_draft(self) -> bool:
        return bool(self.product_name) and self.quantity > 0 and self.unit_price >= 0

    def is_valid_for_send(self) -> bool:
        return bool(self.product_name) and self.quantity > 0 and self.unit_price > 0

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total": self.total,
        }
        if self.notes:
            payload["notes"] = self.notes
        return payload


def normalize_proposal_items(raw_items: Iterable[Mapping[str, Any]] | None) -> List[ProposalLine]:
    # Rows are kept even when invalid: drafts may hold half-filled lines.
    lines: List[ProposalLine] = []
    for raw in raw_items or []:
        if not isinstance(raw, Mapping):
            continue
        notes = str(raw.get("notes") or "").strip() or None
        lines.append(
            ProposalLine(
                product_name=str(raw.get("product_name") or "").strip(),
                quantity=_parse_number(raw.get("quantity")),
                unit_price=_parse_number(raw.get("unit_price")),
                notes=notes,
            )
        )
    return lines


def has_sendable_item(lines: Iterable[ProposalLine]) -> bool:
    return any(line.is_valid_for_send() for line in lines)


def proposal_total(lines: Iterable[ProposalLine]) -> float:
    return round(sum(line.quantity * line.unit_price for line in lines), 2)


def has_confirmed_visit(visits: Iterable[Mapping[str, Any]]) -> bool:
    return any(normalize_status(visit.get("status")) == "confirmed" for visit in visits)


def visit_state(visits: Iterable[Mapping[str, Any]]) -> str:
    """Aggregate visit state of a (quote, supplier) pair.

    ``confirmed`` wins over everything, then a pending ``scheduled`` visit,
    then ``overdue``. One confirmation is enough to unlock the send-gate.
    """
    statuses = {normalize_status(visit.get("status")) for visit in visits}
    for status in ("confirmed", "scheduled", "overdue"):
        if status in statuses:
            return status
    return VISIT_NONE


def can_transition_visit(from_status: str | None, to_status: str | None) -> bool:
    source = normalize_status(from_status) or VISIT_NONE
    return normalize_status(to_status) in VISIT_TRANSITIONS.get(source, frozenset())


def quote_visible_to_supplier(
    quote: Mapping[str, Any],
    *,
    has_response: bool,
    assigned: bool,
) -> bool:
    if has_response or assigned:
        return True
    status = normalize_status(quote.get("status"))
    if status not in QUOTE_OPEN_STATUSES:
        return False
    scope = normalize_status(quote.get("supplier_scope"))
    if scope in OPEN_SUPPLIER_SCOPES:
        return True
    return scope == "local" and not quote.get("supplier_id")


def send_gate_rejection(
    quote: Mapping[str, Any],
    lines: List[ProposalLine],
    visits: Iterable[Mapping[str, Any]],
) -> str | None:
    """First failing precondition of a proposal send, or ``None``.

    Order matters: a locked quote is reported before any item problem.
    """
    if is_quote_locked_for_suppliers(quote.get("status")):
        return "quote_locked"
    if not is_quote_open_for_proposals(quote.get("status")):
        return "quote_not_open"
    if not lines:
        return "items_required"
    if not has_sendable_item(lines):
        return "valid_items_required"
    if bool(quote.get("requires_visit")) and not has_confirmed_visit(visits):
        return "visit_confirmation_required"
    return None


def parse_timestamp(value: Any, *, end_of_day: bool = False) -> datetime | None:
    """Parse an ISO date or datetime into an aware UTC datetime.

    Date-only values mean midnight, or the following midnight when
    ``end_of_day`` is set (a deadline of ``2026-03-10`` lasts the whole day).
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
        if end_of_day:
            parsed += timedelta(days=1)
    else:
        raw = str(value or "").strip()
        if not raw:
            return None
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
        if end_of_day and len(raw) == 10:
            parsed += timedelta(days=1)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def deadline_passed(deadline: Any, now: datetime) -> bool:
    parsed = parse_timestamp(deadline, end_of_day=True)
    return parsed is not None and parsed <= now


def visit_overdue(visit: Mapping[str, Any], now: datetime, grace_hours: int = 0) -> bool:
    if normalize_status(visit.get("status")) != "scheduled":
        return False
    scheduled = parse_timestamp(visit.get("scheduled_date"), end_of_day=True)
    if scheduled is None:
        return False
    return scheduled + timedelta(hours=max(0, int(grace_hours))) <= now


def status_after_proposal_sent(quote_status: str | None) -> str | None:
    # Only the first proposal moves the quote; later ones find it past `sent`.
    if normalize_status(quote_status) == "sent":
        return "receiving"
    return None
