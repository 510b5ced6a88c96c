from .base import BaseRepository, TenantScopeRequiredError
from .party_repository import ClientRepository, SupplierRepository
from .quote_repository import QuoteRepository
from .quote_response_repository import QuoteResponseRepository
from .quote_visit_repository import QuoteVisitRepository
from .status_event_repository import StatusEventRepository

__all__ = [
    "BaseRepository",
    "ClientRepository",
    "QuoteRepository",
    "QuoteResponseRepository",
    "QuoteVisitRepository",
    "StatusEventRepository",
    "SupplierRepository",
    "TenantScopeRequiredError",
]
