from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, List, Type

from portal_cotacoes.observability import observe_domain_event_emitted


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)
    tenant_id: str = ""

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        normalized_tenant = str(self.tenant_id or "").strip() or "unknown"

        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at.astimezone(timezone.utc))
        object.__setattr__(self, "tenant_id", normalized_tenant)


@dataclass(frozen=True, kw_only=True)
class QuoteCreated(DomainEvent):
    quote_id: int
    client_id: int
    local_code: str
    status: str


@dataclass(frozen=True, kw_only=True)
class QuoteDispatched(DomainEvent):
    quote_id: int
    supplier_scope: str


@dataclass(frozen=True, kw_only=True)
class ProposalDraftSaved(DomainEvent):
    quote_id: int
    supplier_id: int
    response_id: int


@dataclass(frozen=True, kw_only=True)
class ProposalSent(DomainEvent):
    quote_id: int
    supplier_id: int
    response_id: int
    total_amount: float


@dataclass(frozen=True, kw_only=True)
class QuoteReceivingStarted(DomainEvent):
    quote_id: int
    trigger: str = "proposal_sent"


@dataclass(frozen=True, kw_only=True)
class VisitScheduled(DomainEvent):
    quote_id: int
    supplier_id: int
    visit_id: int
    scheduled_date: str
    rescheduled: bool = False


@dataclass(frozen=True, kw_only=True)
class VisitConfirmed(DomainEvent):
    quote_id: int
    supplier_id: int
    visit_id: int


class EventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("portal_cotacoes")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            handlers.append(handler)

    def publish(self, event: DomainEvent) -> None:
        observe_domain_event_emitted(type(event).__name__)
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception(
                    "event_handler_failed",
                    extra={"event_type": type(event).__name__, "event_id": event.event_id},
                )

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


_DEFAULT_EVENT_BUS = EventBus()


def get_event_bus() -> EventBus:
    return _DEFAULT_EVENT_BUS


def reset_event_bus_for_tests() -> None:
    _DEFAULT_EVENT_BUS.clear()
