"""Domain errors raised by DealDesk operations.

Each error carries the HTTP status the API layer reports it with. They are
expected, user-actionable outcomes and are never logged as system errors.
"""
from __future__ import annotations


class DealDeskError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationFailed(DealDeskError):
    status_code = 400


class NotFound(DealDeskError):
    status_code = 404


class Conflict(DealDeskError):
    status_code = 409


class Gone(DealDeskError):
    """A token that expired or was already used."""

    status_code = 410


class Unauthorized(DealDeskError):
    status_code = 401
