"""
Service-level exceptions.

Services raise these instead of ``HTTPException`` so they stay usable from the
worker and from tests; ``bookstore.app`` maps them to JSON responses.
"""

from __future__ import annotations


class ServiceError(Exception):
    status_code: int = 400

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class BadRequest(ServiceError):
    status_code = 400


class PaymentRequired(ServiceError):
    status_code = 402


class Forbidden(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    status_code = 409


class InvalidTransition(Conflict):
    """Lifecycle change not allowed from the current status."""

    def __init__(self, current: str, target: str, status_code: int | None = None) -> None:
        super().__init__(f"Invalid transition from {current} to {target}", status_code)
        self.current = current
        self.target = target


class Gone(ServiceError):
    status_code = 410
