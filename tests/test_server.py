import signal
import threading
import time
import urllib.error
import urllib.request
from wsgiref.util import setup_testing_defaults

import pytest

from fluidapi.api import Endpoint
from fluidapi.server import (
    DefaultHTTPServer,
    Server,
    ServerClosed,
    create_endpoint_handler,
    create_not_found_handler,
    default_http_server,
    http_server,
    multiplex_endpoints,
    panic_handler,
    setup_mux,
    stack_trace,
    start_server,
)


def call(app, method="GET", path="/test"):
    environ = {}
    setup_testing_defaults(environ)
    environ["REQUEST_METHOD"] = method
    environ["PATH_INFO"] = path
    captured = {}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status
        captured["headers"] = dict(headers)
        return lambda data: None

    body = b"".join(app(environ, start_response))
    return int(captured["status"].split()[0]), captured["headers"], body


def make_logger(store):
    def factory(environ):
        return lambda *messages: store.append("".join(str(m) for m in messages))

    return factory


def quiet_logger(environ):
    return lambda *messages: None


def hello(next_app):
    def app(environ, start_response):
        start_response("200 OK", [("Content-Type", "text/plain")])
        return [b"Hello, World!"]

    return app


def header_middleware(next_app):
    def app(environ, start_response):
        def wrapped(status, headers, exc_info=None):
            return start_response(
                status, list(headers) + [("X-Test-Middleware", "true")], exc_info
            )

        return next_app(environ, wrapped)

    return app


def created(next_app):
    def app(environ, start_response):
        start_response("201 Created", [])
        return [b"Created"]

    return app


class MockServer(Server):
    def __init__(self, listen=None, shutdown_error=None):
        self._listen = listen
        self._shutdown_error = shutdown_error
        self.stopped = threading.Event()

    def listen_and_serve(self):
        if self._listen is not None:
            self._listen(self)

    def shutdown(self, timeout=None):
        self.stopped.set()
        if self._shutdown_error is not None:
            raise self._shutdown_error


def wait_then_closed(server):
    server.stopped.wait(5)
    raise ServerClosed("closed")


def test_not_found_endpoint():
    mux = setup_mux([Endpoint("/test", "GET", [hello])], quiet_logger, quiet_logger)
    status, _, body = call(mux, "GET", "/notfound")
    assert status == 404
    assert body == b"Not Found\n"


def test_wrong_method():
    mux = setup_mux([Endpoint("/test", "GET", [hello])], quiet_logger, quiet_logger)
    status, _, _ = call(mux, "POST", "/test")
    assert status == 405


def test_registered_endpoint():
    mux = setup_mux([Endpoint("/test", "GET", [hello])], quiet_logger, quiet_logger)
    status, _, body = call(mux, "GET", "/test")
    assert status == 200
    assert body == b"Hello, World!"


def test_default_http_server():
    server = default_http_server(
        8080, [Endpoint("/test", "GET", [hello])], quiet_logger, quiet_logger
    )
    assert isinstance(server, DefaultHTTPServer)
    assert server.addr == ":8080"
    status, _, body = call(server.handler, "GET", "/test")
    assert (status, body) == (200, b"Hello, World!")


def test_default_http_server_serves_over_network():
    server = default_http_server(
        0, [Endpoint("/test", "GET", [hello])], quiet_logger, quiet_logger
    )
    stop = threading.Event()
    outcome = {}

    def run():
        try:
            start_server(stop, server)
            outcome["error"] = None
        except Exception as err:
            outcome["error"] = err

    worker = threading.Thread(target=run, daemon=True)
    worker.start()
    deadline = time.monotonic() + 5
    while server.server_address is None and time.monotonic() < deadline:
        time.sleep(0.01)
    base = f"http://127.0.0.1:{server.server_address[1]}"

    with urllib.request.urlopen(base + "/test", timeout=5) as response:
        assert response.status == 200
        assert response.read() == b"Hello, World!"

    with pytest.raises(urllib.error.HTTPError) as not_found:
        urllib.request.urlopen(base + "/notfound", timeout=5)
    not_found.value.close()
    assert not_found.value.code == 404

    request = urllib.request.Request(base + "/test", data=b"", method="POST")
    with pytest.raises(urllib.error.HTTPError) as not_allowed:
        urllib.request.urlopen(request, timeout=5)
    not_allowed.value.close()
    assert not_allowed.value.code == 405

    stop.set()
    worker.join(5)
    assert not worker.is_alive()
    assert outcome == {"error": None}


def test_listen_after_shutdown_raises_server_closed():
    server = DefaultHTTPServer(":0", hello(None))
    server.shutdown(1)
    with pytest.raises(ServerClosed):
        server.listen_and_serve()


def test_start_server_normal_operation():
    server = MockServer(listen=wait_then_closed)
    stop = threading.Event()
    threading.Timer(0.2, stop.set).start()
    assert start_server(stop, server) is None
    assert server.stopped.is_set()


def test_start_server_start_error():
    def fail(_server):
        raise RuntimeError("mock server start error")

    server = MockServer(listen=fail)
    with pytest.raises(RuntimeError, match="^mock server start error$"):
        start_server(threading.Event(), server)
    assert server.stopped.is_set()


def test_start_server_shutdown_error():
    server = MockServer(
        listen=wait_then_closed, shutdown_error=RuntimeError("mock server shutdown error")
    )
    stop = threading.Event()
    stop.set()
    with pytest.raises(RuntimeError, match="mock server shutdown error"):
        start_server(stop, server)


def test_http_server_restores_signal_handlers():
    before = signal.getsignal(signal.SIGINT)

    def fail(_server):
        raise RuntimeError("mock server start error")

    with pytest.raises(RuntimeError, match="mock server start error"):
        http_server(MockServer(listen=fail))
    assert signal.getsignal(signal.SIGINT) is before


def test_setup_mux():
    info, errors = [], []
    endpoints = [
        Endpoint("/test", "GET", [header_middleware]),
        Endpoint("/test", "POST", [created]),
    ]
    mux = setup_mux(endpoints, make_logger(info), make_logger(errors))

    status, headers, _ = call(mux, "GET", "/test")
    assert status == 200
    assert headers["X-Test-Middleware"] == "true"

    status, _, body = call(mux, "POST", "/test")
    assert status == 201
    assert body == b"Created"

    status, _, _ = call(mux, "PUT", "/test")
    assert status == 405
    assert "Method not allowed" in info[0]


def test_setup_mux_rejects_root_registration():
    with pytest.raises(ValueError, match="multiple registrations"):
        setup_mux([Endpoint("/", "GET", [hello])], quiet_logger, quiet_logger)


def _text_app(text):
    def app(environ, start_response):
        start_response("200 OK", [("Content-Type", "text/plain")])
        return [text.encode()]

    return app


@pytest.mark.parametrize(
    "method, expected_status, expected_body",
    [
        ("GET", 200, b"GET method\n"),
        ("POST", 200, b"POST method\n"),
        ("PUT", 405, b"Method Not Allowed\n"),
    ],
)
def test_create_endpoint_handler(method, expected_status, expected_body):
    handlers = {"GET": _text_app("GET method\n"), "POST": _text_app("POST method\n")}
    handler = create_endpoint_handler(handlers, quiet_logger, quiet_logger)
    status, _, body = call(handler, method, "/test")
    assert status == expected_status
    assert body == expected_body


def test_create_endpoint_handler_without_error_logger_does_not_log():
    info = []
    handler = create_endpoint_handler({}, make_logger(info), None)
    status, _, _ = call(handler, "PUT", "/test")
    assert status == 405
    assert info == []


def test_create_not_found_handler():
    info = []
    handler = create_not_found_handler(make_logger(info))
    status, headers, body = call(handler, "GET", "/non-existent")
    assert status == 404
    assert body == b"Not Found\n"
    assert headers["Content-Type"] == "text/plain; charset=utf-8"
    assert info == ["Not found: /non-existent (GET)"]


def test_multiplex_endpoints():
    muxed = multiplex_endpoints(
        [Endpoint("/test", "GET", [header_middleware])], quiet_logger
    )
    assert list(muxed) == ["/test"]
    assert list(muxed["/test"]) == ["GET"]
    status, headers, _ = call(muxed["/test"]["GET"], "GET", "/test")
    assert headers["X-Test-Middleware"] == "true"
    assert status == 200


def test_panic_handler_normal():
    logged = []
    handler = panic_handler(_text_app("OK"), make_logger(logged))
    status, _, body = call(handler, "GET", "/")
    assert status == 200
    assert body == b"OK"
    assert logged == []


def test_panic_handler_recovers():
    logged = []

    def panicking(environ, start_response):
        raise RuntimeError("test panic")

    handler = panic_handler(panicking, make_logger(logged))
    status, _, body = call(handler, "GET", "/")
    assert status == 500
    assert b"Internal Server Error" in body
    assert len(logged) == 1
    assert "Server panic" in logged[0]
    assert "test panic" in logged[0]


def test_stack_trace():
    trace = stack_trace()
    assert trace
    for entry in trace:
        file_line, _, func_name = entry.rpartition(" ")
        file_name, _, line = file_line.rpartition(":")
        assert file_name
        assert line.isdigit()
        assert func_name
    assert any("test_stack_trace" in entry for entry in trace)
    check_deep_stack_trace()


def check_deep_stack_trace():
    trace = stack_trace()
    assert any("check_deep_stack_trace" in entry for entry in trace)
    assert any("test_stack_trace" in entry for entry in trace)
    assert "check_deep_stack_trace" in trace[1]