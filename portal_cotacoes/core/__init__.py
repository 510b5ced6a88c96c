from portal_cotacoes.core.event_bus import (
    DomainEvent,
    EventBus,
    ProposalDraftSaved,
    ProposalSent,
    QuoteCreated,
    QuoteDispatched,
    QuoteReceivingStarted,
    VisitConfirmed,
    VisitScheduled,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "QuoteCreated",
    "QuoteDispatched",
    "ProposalDraftSaved",
    "ProposalSent",
    "QuoteReceivingStarted",
    "VisitScheduled",
    "VisitConfirmed",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
