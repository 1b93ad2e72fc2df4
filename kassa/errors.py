"""
Error taxonomy shared by every entry point.

Each error carries the HTTP status it maps to; the server installs one
handler that renders them as ``{"ok": false, "error": ..., "code": ...}``.
"""
from typing import Optional


class KassaError(Exception):
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def as_body(self) -> dict:
        body = {"ok": False, "error": self.message}
        if self.code:
            body["code"] = self.code
        return body


class ValidationError(KassaError):
    status_code = 400


class NotFoundError(KassaError):
    status_code = 404


class Unauthenticated(KassaError):
    status_code = 401


class Forbidden(KassaError):
    status_code = 403


class ProviderError(KassaError):
    status_code = 502

    def __init__(self, message: str = "Could not start payment",
                 code: Optional[str] = "provider_error") -> None:
        super().__init__(message, code)


class SignatureError(KassaError):
    status_code = 400


class ConflictError(KassaError):
    status_code = 409


class AccessTokenError(ConflictError):
    # bad or expired guest receipt token
    status_code = 403
