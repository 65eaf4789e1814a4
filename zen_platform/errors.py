from __future__ import annotations

from typing import Any, Dict

from zen_platform.ui_strings import error_message


class AppError(Exception):
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
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "Nao foi possivel concluir a operacao.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    default_code = "validation_error"
    default_message_key = "validation_error"
    default_http_status = 400
    default_critical = False


class InvalidRankError(ValidationError):
    default_code = "invalid_rank"
    default_message_key = "invalid_rank"


class PermissionError(UserActionError):
    default_code = "permission_denied"
    default_message_key = "permission_denied"
    default_http_status = 403
    default_critical = False


class NotFoundError(UserActionError):
    default_code = "item_not_found"
    default_message_key = "item_not_found"
    default_http_status = 404
    default_critical = False


class ConflictError(AppError):
    """Concurrent modification detected while rewriting ranks of a scope."""

    default_code = "rank_conflict"
    default_message_key = "rank_conflict"
    default_http_status = 409
    default_critical = False


class PersistenceError(AppError):
    """A write failed in the store; the surrounding transaction was rolled back."""

    default_code = "persistence_error"
    default_message_key = "persistence_error"
    default_http_status = 503
    default_critical = True

    def __init__(self, *args, failed_item_id: str | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.failed_item_id = failed_item_id


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True
