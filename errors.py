"""Exception hierarchy shared by the store, the feed and the HTTP layer."""

from typing import Optional


class PoetryError(Exception):
    """Base exception for all application errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class StoreError(PoetryError):
    """The document store failed to answer a query."""


class InvalidIdError(PoetryError):
    status_code = 400

    def __init__(self, value: str):
        super().__init__("Invalid id", {"value": value})
        self.value = value


class NotFoundError(PoetryError):
    status_code = 404


class PermissionDeniedError(PoetryError):
    status_code = 403


class ValidationFailedError(PoetryError):
    status_code = 400


class AuthenticationError(PoetryError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized", details: Optional[dict] = None):
        super().__init__(message, details)
        self.headers = {"WWW-Authenticate": "Bearer"}
