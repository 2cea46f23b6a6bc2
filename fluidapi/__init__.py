"""WSGI endpoint routing and middleware, a JSON HTTP client, database connection setup and SQL insert helpers."""

__version__ = "0.1.0"
__all__ = ["api", "client", "server", "connection", "entity"]