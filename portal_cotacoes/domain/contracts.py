from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class QuoteCreateInput:
    client_id: int
    title: str
    description: str | None
    deadline: str | None
    items: List[Dict[str, Any]]
    supplier_scope: str = "all"
    supplier_ids: List[int] = field(default_factory=list)
    supplier_id: int | None = None
    requires_visit: bool = False
    visit_deadline: str | None = None
    send_now: bool = False


@dataclass(frozen=True)
class ProposalTerms:
    delivery_time: int | None = None
    payment_terms: str | None = None
    shipping_cost: float = 0.0
    warranty_months: int | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ProposalDefaults:
    delivery_time: int = 7
    payment_terms: str = "30 dias"
    warranty_months: int = 12


@dataclass(frozen=True)
class ProposalInput:
    quote_id: int
    supplier_id: int
    items: List[Dict[str, Any]]
    terms: ProposalTerms = field(default_factory=ProposalTerms)


@dataclass(frozen=True)
class VisitScheduleInput:
    quote_id: int
    supplier_id: int
    scheduled_date: str
    notes: str | None = None


@dataclass(frozen=True)
class VisitRescheduleInput:
    visit_id: int
    scheduled_date: str
    reason: str | None = None


@dataclass(frozen=True)
class VisitConfirmInput:
    visit_id: int
    confirmed_by: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class SupplierIdentity:
    supplier_id: int
    name: str
    email: str | None = None


@dataclass(frozen=True)
class SweepReport:
    tenant_id: str
    visits_overdue: int = 0
    responses_expired: int = 0
    quotes_expired: int = 0
    quotes_reconciled: int = 0

    @property
    def total_transitions(self) -> int:
        return self.visits_overdue + self.responses_expired + self.quotes_expired + self.quotes_reconciled

    def as_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "visits_overdue": self.visits_overdue,
            "responses_expired": self.responses_expired,
            "quotes_expired": self.quotes_expired,
            "quotes_reconciled": self.quotes_reconciled,
        }
