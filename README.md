# fluidapi

A small toolkit for building JSON APIs with the Python standard library alone:

- **`fluidapi.api`**: `Endpoint` descriptions, `apply_middlewares` for
  chaining WSGI middlewares, `MiddlewareWrapper`, and `APIError`.
- **`fluidapi.client`**: a JSON HTTP client that places the fields of an
  input dataclass into the URL query, the JSON body, headers or cookies.
- **`fluidapi.server`**: a WSGI application that routes requests by URL and
  method, answers 404 and 405, turns exceptions into 500 responses, and a
  threaded server that shuts down on SIGINT or SIGTERM.
- **`fluidapi.connection`**: database connection settings, DSN building and
  pool setup through a database object you supply.
- **`fluidapi.entity`**: builders and runners for `INSERT` statements and
  for arbitrary prepared statements.

## Installation

```sh
pip install fluidapi
```

To run the tests:

```sh
pip install "fluidapi[test]"
pytest
```

## Errors

```python
from fluidapi.api import APIError

not_found = APIError("not_found")
detailed = not_found.with_data({"id": 42}).with_message("no such item")
str(detailed)        # "not_found: no such item"
detailed.to_dict()   # {"id": "not_found", "data": {"id": 42}, "message": "no such item"}
```

`APIError` is an exception. `with_data` returns a new error with the same ID
and the given data (and no message); `with_message` keeps the ID and data and
sets the message. The original error is left unchanged. `to_dict` leaves out
data and message when they are `None`.

## Endpoints and middleware

An `Endpoint` is a URL, an HTTP method and a list of middlewares. A
middleware takes the next WSGI application and returns a new one.
`apply_middlewares(handler, *middlewares)` wraps `handler` so that the first
middleware in the list is the outermost.

```python
from fluidapi.api import Endpoint
from fluidapi.server import default_http_server, http_server


def hello(next_app):
    def app(environ, start_response):
        start_response("200 OK", [("Content-Type", "text/plain")])
        return [b"Hello, World!"]
    return app


endpoints = [Endpoint("/hello", "GET", [hello])]


def logger(environ):
    return lambda *messages: print(*messages)


server = default_http_server(8080, endpoints, logger, logger)
http_server(server)  # blocks until SIGINT or SIGTERM
```

The innermost application of every endpoint answers `200 OK` with an empty
body, so an endpoint's behaviour comes from its middlewares.

`setup_mux(endpoints, logger_info, logger_error)` builds the routing WSGI
application on its own, which is handy for tests or for another WSGI server:

- a path registered by an endpoint is matched exactly; registered paths
  ending in `/` also match everything below them;
- any other path gets `404 Not Found`, logged through `logger_info`;
- a known path with an unregistered method gets `405 Method Not Allowed`,
  logged through `logger_info` when `logger_error` is not `None`;
- an exception raised inside an endpoint is logged through `logger_error`
  as `"Server panic"` with the error and the call stack, and answered with
  `500 Internal Server Error`.

Each logger is a function that takes the WSGI environ and returns a function
taking the messages.

`DefaultHTTPServer` serves a WSGI application on an address `"host:port"`
(`":8080"` listens on all interfaces) with a thread per request.
`listen_and_serve` raises `ServerClosed` once `shutdown` has been called.
`http_server(server)` runs any `Server` until SIGINT or SIGTERM (signal
handlers are installed only when called from the main thread);
`start_server(stop_event, server)` does the same with a `threading.Event`
you control. Both shut the server down with a 10 second timeout and re-raise
an error that serving failed with.

## Client

Fields of an input dataclass go to the query string for `GET` and to the JSON
body for every other method, unless `input_field` gives them a name and a
placement (`"url"`, `"body"`, `"header"`, `"headers"`, `"cookie"` or
`"cookies"`, or a `Placement` member):

```python
from dataclasses import dataclass
from fluidapi.client import URLEncoder, input_field, send


@dataclass
class GetUser:
    name: str = input_field("name", "url")
    token: str = input_field("X-Token", "headers")


response = send(GetUser("alice", "token"), "/user", "http://localhost:8080", "GET", URLEncoder())
response.response  # the HTTP response object
response.output    # the decoded JSON payload
```

`URLEncoder.encode_url` turns each URL parameter into a list of strings
(lists and tuples give repeated keys, booleans become `true`/`false`) and
raises `ClientError` for a `None` value; the query string is sorted by key.
Header and cookie values are sent as strings. When the request has headers
and none is `Content-Type`, `application/json` is added. Error statuses are
not raised: their body is decoded like any other.

`ClientError` is raised for a `GET` request that carries a body, a body that
cannot be encoded as JSON, an unknown placement, an invalid URL, and a
response that is not valid JSON.

Pass `HandlerOpts(input_parser, sender)` as `opts` to `send` to replace how
input is parsed or how the request is sent; `default_handler_opts(encoder)`
gives the defaults, which use `parse_input` and `process_and_send`.

## Database connections

```python
from fluidapi.connection import connect, new_default_tcp_config

password = "password"
cfg = new_default_tcp_config("user", password, "shop", "mysql")
db = connect(cfg, db_factory)
```

`new_default_tcp_config` connects to `localhost:3306`;
`new_default_unix_config` takes a socket directory and name instead. Both set
a 10 minute connection lifetime, a 5 minute idle time, 25 open and 5 idle
connections. `build_dsn(cfg)` fills the config's `dsn_format`, for example
`user:password@tcp(localhost:3306)/shop?parseTime=true&`.

`db_factory(driver_name, dsn)` must return a database object with
`set_conn_max_lifetime`, `set_conn_max_idle_time`, `set_max_open_conns`,
`set_max_idle_conns` and `ping`. `connect` applies the pool settings and
pings; an unsupported connection type, a failing factory or a failing ping
raises `DatabaseConnectionError`.

## Entities

The helpers work with a *preparer*: an object whose `prepare(query)` returns
a statement with `execute(*args)`, `query(*args)` and `close()`. The result
of `execute` must have `last_insert_id()`.

```python
from fluidapi.entity import create_entity, insert_query

def user_inserter(user):
    return ["id", "name"], [user.id, user.name]

insert_query(user, "user", user_inserter)
# ("INSERT INTO `user` (`id`, `name`) VALUES (?, ?)", [1, "Alice"])

new_id = create_entity(user, db, "user", user_inserter, sql_util)
```

`create_entities` inserts several rows in one statement, taking the columns
from the first entity, and returns `0` without touching the database when
given none. When an insert fails, `sql_util.check_db_error(err)` is called;
the error it returns is raised in place of the original (returning `None` or
the same error re-raises the original).

`exec_query(preparer, query, parameters)` runs a statement, closes it and
returns its result. `rows_query` returns the rows and the still open
statement, which the caller closes; the statement is closed if the query
fails.

## What it does not do

- No database driver is included: `connect` only works with the database
  object your factory returns.
- `fluidapi.entity` only builds `INSERT` statements; there are no builders
  for `SELECT`, `UPDATE`, `DELETE` or counting queries, which have to be
  written by hand and run with `exec_query` or `rows_query`.
- There is no command-line program; the server is started from Python code.