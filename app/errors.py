"""Exceptions shared by the catalog, sync and recommendation layers."""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for failures talking to the title catalog."""

    code: str = "catalog_error"

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.__class__.__name__)
        if code:
            self.code = code


class TransientNetworkError(CatalogError):
    """Retryable failure (timeouts, throttling, 5xx responses)."""

    code = "transient_network"


class NotFoundError(CatalogError):
    """The requested title id could not be resolved."""

    code = "not_found"


class AuthRequiredError(Exception):
    """A user-state mutation was attempted without a signed-in user."""

    code = "auth_required"
