"""Endpoint descriptions, API errors and WSGI middleware chaining."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

WSGIApp = Callable[[dict, Callable[..., Any]], Iterable[bytes]]
Middleware = Callable[[WSGIApp], WSGIApp]


@dataclass
class Endpoint:
    """An API endpoint: a URL, an HTTP method and the middlewares serving it."""

    url: str
    method: str
    middlewares: list[Middleware] = field(default_factory=list)


class APIError(Exception):
    """An error returned by the API, identified by an ID with optional data and message."""

    def __init__(self, id: str, data: Any = None, message: str | None = None) -> None:
        self.id = id
        self.data = data
        self.message = message
        super().__init__(str(self))

    def with_data(self, data: Any) -> APIError:
        """Return a new error with the same ID and the given data."""
        return APIError(self.id, data)

    def with_message(self, message: str) -> APIError:
        """Return a new error with the same ID and data and the given message."""
        return APIError(self.id, self.data, message)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON representation, leaving out absent data and message."""
        result: dict[str, Any] = {"id": self.id}
        if self.data is not None:
            result["data"] = self.data
        if self.message is not None:
            result["message"] = self.message
        return result

    def __str__(self) -> str:
        if self.message is not None:
            return f"{self.id}: {self.message}"
        return self.id

    def __repr__(self) -> str:
        return f"APIError(id={self.id!r}, data={self.data!r}, message={self.message!r})"


def apply_middlewares(handler: WSGIApp, *args: Middleware) -> WSGIApp:
    """Wrap handler with middlewares; the first middleware becomes the outermost."""
    for middleware in reversed(args):
        handler = middleware(handler)
    return handler


@dataclass
class MiddlewareWrapper:
    """A middleware together with an identifier and the inputs it was built from."""

    id: str
    middleware: Middleware
    inputs: list[Any] = field(default_factory=list)