from __future__ import annotations

from typing import Any, Dict

from portal_cotacoes.ui_strings import error_message


class AppError(Exception):
    """Error rendered by the app error handler as ``{"error", "message", "request_id"}``.

    Subclasses only pin defaults; any of them can be overridden per raise.
    ``critical`` errors are logged with traceback at error level.
    """

    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        # the message key follows an overridden code unless given explicitly
        self.message_key = (message_key or (code if code else self.default_message_key)).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = self.default_critical if critical is None else bool(critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        return error_message(self.message_key, error_message("unexpected_error"))

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
            **self.payload,
        }


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class PermissionError(UserActionError):
    default_code = "permission_denied"
    default_message_key = "permission_denied"
    default_http_status = 403


class SupplierRequiredError(PermissionError):
    """Supplier routes called by someone that maps to no supplier of the workspace."""

    default_code = "supplier_required"
    default_message_key = "supplier_required"


class ClientNotFoundError(PermissionError):
    default_code = "client_not_found"
    default_message_key = "client_not_found"


class NotFoundError(UserActionError):
    default_code = "not_found"
    default_message_key = "not_found"
    default_http_status = 404


class SystemError(AppError):
    pass
