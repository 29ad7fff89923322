"""Error taxonomy for the dispatch core.

The API maps each class to an HTTP status via ``status_code``; the core
itself never imports anything HTTP-specific.
"""
from __future__ import annotations


class DispatchError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DispatchError):
    """Bad input shape: missing prompt/model, too few models, empty inventory."""

    status_code = 400


class NotFound(DispatchError):
    """Unknown job or composite id."""

    status_code = 404


class ConflictError(DispatchError):
    """Report rejected because the job already reached a terminal status."""

    status_code = 409


class StoreError(DispatchError):
    """Underlying persistence failure."""

    status_code = 500
