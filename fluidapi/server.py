"""WSGI routing by URL and method, panic recovery and a signal-aware server runner."""

from __future__ import annotations

import abc
import logging
import signal
import threading
import traceback
from collections.abc import Callable, Iterable, Mapping, Sequence
from http import HTTPStatus
from socketserver import ThreadingMixIn
from typing import Any
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from fluidapi.api import Endpoint, WSGIApp, apply_middlewares

logger = logging.getLogger(__name__)

LoggerFn = Callable[[dict], Callable[..., None]]

SHUTDOWN_TIMEOUT = 10.0


class ServerClosed(Exception):
    """Raised by listen_and_serve once the server has been shut down."""


class Server(abc.ABC):
    """An HTTP server that can be started and shut down."""

    @abc.abstractmethod
    def listen_and_serve(self) -> None:
        """Serve until shut down; raise ServerClosed after a shutdown."""

    @abc.abstractmethod
    def shutdown(self, timeout: float | None = None) -> None:
        """Stop serving, waiting at most timeout seconds."""


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:
        logger.debug(format, *args)


class DefaultHTTPServer(Server):
    """A threaded WSGI server listening on an address of the form "host:port"."""

    def __init__(self, addr: str, handler: WSGIApp) -> None:
        self.addr = addr
        self.handler = handler
        self.server_address: tuple[str, int] | None = None
        self._lock = threading.Lock()
        self._httpd: WSGIServer | None = None
        self._closed = False

    def listen_and_serve(self) -> None:
        host, _, port = self.addr.rpartition(":")
        with self._lock:
            if self._closed:
                raise ServerClosed("http: Server closed")
            httpd = make_server(
                host,
                int(port),
                self.handler,
                server_class=_ThreadingWSGIServer,
                handler_class=_QuietHandler,
            )
            self._httpd = httpd
            self.server_address = tuple(httpd.server_address[:2])
        try:
            httpd.serve_forever(poll_interval=0.1)
        finally:
            httpd.server_close()
        raise ServerClosed("http: Server closed")

    def shutdown(self, timeout: float | None = None) -> None:
        with self._lock:
            self._closed = True
            httpd = self._httpd
        if httpd is None:
            return
        stopper = threading.Thread(target=httpd.shutdown, daemon=True)
        stopper.start()
        stopper.join(timeout)
        if stopper.is_alive():
            raise TimeoutError("server shutdown timed out")


def http_server(server: Server) -> None:
    """Run the server until SIGINT or SIGTERM arrives, then shut it down."""
    stop_event = threading.Event()
    previous: dict[int, Any] = {}
    if threading.current_thread() is threading.main_thread():
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, lambda *_: stop_event.set())
    try:
        start_server(stop_event, server)
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)


def default_http_server(
    port: int,
    endpoints: Sequence[Endpoint],
    logger_info: LoggerFn,
    logger_error: LoggerFn | None,
) -> DefaultHTTPServer:
    """Build a server on the given port that routes to the endpoints."""
    return DefaultHTTPServer(f":{port}", setup_mux(endpoints, logger_info, logger_error))


def start_server(stop_event: threading.Event, server: Server) -> None:
    """Serve until stop_event is set or serving fails; raise the serving error if any."""
    errors: list[BaseException] = []

    def run() -> None:
        logger.info("Starting HTTP server")
        try:
            server.listen_and_serve()
        except ServerClosed:
            pass
        except Exception as err:
            logger.error("Error starting HTTP server: %s", err)
            errors.append(err)
            stop_event.set()

    worker = threading.Thread(target=run, daemon=True)
    worker.start()

    stop_event.wait()
    logger.info("Shutting down HTTP server")
    server.shutdown(SHUTDOWN_TIMEOUT)
    logger.info("HTTP server shutdown")

    worker.join()
    if errors:
        raise errors[0]


def _request_url(environ: Mapping[str, Any]) -> str:
    path = environ.get("PATH_INFO") or "/"
    query = environ.get("QUERY_STRING")
    return f"{path}?{query}" if query else path


def _error_response(start_response: Callable[..., Any], status: HTTPStatus) -> list[bytes]:
    body = f"{status.phrase}\n".encode("utf-8")
    start_response(
        f"{status.value} {status.phrase}",
        [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("X-Content-Type-Options", "nosniff"),
            ("Content-Length", str(len(body))),
        ],
    )
    return [body]


def setup_mux(
    endpoints: Sequence[Endpoint],
    logger_info: LoggerFn,
    logger_error: LoggerFn | None,
) -> WSGIApp:
    """Build a WSGI app that routes by path, then by method, with a 404 fallback."""
    routes: dict[str, WSGIApp] = {}
    for url, handlers in multiplex_endpoints(endpoints, logger_error).items():
        logger.info("Registering URL: %s %s", url, list(handlers))
        routes[url] = create_endpoint_handler(handlers, logger_info, logger_error)
    if "/" in routes:
        raise ValueError("multiple registrations for /")
    routes["/"] = create_not_found_handler(logger_info)

    prefixes = sorted((p for p in routes if p.endswith("/")), key=len, reverse=True)

    def mux(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        path = environ.get("PATH_INFO") or "/"
        app = routes.get(path)
        if app is None:
            app = next(
                (routes[prefix] for prefix in prefixes if path.startswith(prefix)),
                routes["/"],
            )
        return app(environ, start_response)

    return mux


def create_endpoint_handler(
    handlers: Mapping[str, WSGIApp],
    logger_info: LoggerFn,
    logger_error: LoggerFn | None,
) -> WSGIApp:
    """Dispatch by request method; unknown methods get 405 Method Not Allowed."""

    def handler(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        method = environ.get("REQUEST_METHOD", "GET")
        app = handlers.get(method)
        if app is not None:
            return app(environ, start_response)
        if logger_error is not None:
            logger_info(environ)(f"Method not allowed: {_request_url(environ)} ({method})")
        return _error_response(start_response, HTTPStatus.METHOD_NOT_ALLOWED)

    return handler


def create_not_found_handler(logger_info: LoggerFn) -> WSGIApp:
    """Answer every request with 404 Not Found and log it."""

    def handler(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        method = environ.get("REQUEST_METHOD", "GET")
        logger_info(environ)(f"Not found: {_request_url(environ)} ({method})")
        return _error_response(start_response, HTTPStatus.NOT_FOUND)

    return handler


def _empty_app(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
    start_response("200 OK", [])
    return [b""]


def multiplex_endpoints(
    endpoints: Sequence[Endpoint],
    logger_error: LoggerFn | None,
) -> dict[str, dict[str, WSGIApp]]:
    """Group endpoints by URL and method, each wrapped in its middlewares and panic recovery."""
    result: dict[str, dict[str, WSGIApp]] = {}
    for endpoint in endpoints:
        result.setdefault(endpoint.url, {})[endpoint.method] = panic_handler(
            apply_middlewares(_empty_app, *endpoint.middlewares),
            logger_error,
        )
    return result


def panic_handler(app: WSGIApp, logger_error: LoggerFn | None) -> WSGIApp:
    """Turn any exception raised by app into a logged 500 Internal Server Error."""

    def handler(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        chunks: list[bytes] = []
        captured: dict[str, Any] = {}

        def capture(status: str, headers: list, exc_info: Any = None) -> Callable[[bytes], None]:
            captured["status"] = status
            captured["headers"] = list(headers)
            return chunks.append

        try:
            result = app(environ, capture)
            try:
                chunks.extend(result)
            finally:
                close = getattr(result, "close", None)
                if close is not None:
                    close()
        except Exception as err:
            if logger_error is not None:
                logger_error(environ)("Server panic", f"{err}, {stack_trace()}")
            return _error_response(start_response, HTTPStatus.INTERNAL_SERVER_ERROR)

        start_response(captured.get("status", "200 OK"), captured.get("headers", []))
        return chunks

    return handler


def stack_trace() -> list[str]:
    """Return the current call stack, innermost first, as "file:line function" entries."""
    frames = traceback.extract_stack()
    return [f"{frame.filename}:{frame.lineno} {frame.name}" for frame in reversed(frames)]