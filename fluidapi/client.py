"""JSON HTTP client that maps dataclass inputs onto URL, body, headers and cookies."""

from __future__ import annotations

import dataclasses
import enum
import json
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Mapping
from typing import Any

CONTENT_TYPE_HEADER = "Content-Type"
APPLICATION_JSON = "application/json"

_SOURCE_KEY = "source"
_JSON_KEY = "json"


class ClientError(Exception):
    """Raised when a request cannot be built, sent or decoded."""


class Placement(str, enum.Enum):
    """Where a field of the input is placed in the request."""

    URL = "url"
    BODY = "body"
    HEADER = "header"
    HEADERS = "headers"
    COOKIE = "cookie"
    COOKIES = "cookies"


@dataclasses.dataclass
class ParsedInput:
    """Input split into headers, cookies, URL parameters and body."""

    headers: dict[str, str] = dataclasses.field(default_factory=dict)
    cookies: list[tuple[str, str]] = dataclasses.field(default_factory=list)
    url_parameters: dict[str, Any] = dataclasses.field(default_factory=dict)
    body: dict[str, Any] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class RequestData:
    """Data ready to be sent in a request."""

    headers: dict[str, str] | None = None
    cookies: list[tuple[str, str]] = dataclasses.field(default_factory=list)
    url_parameters: dict[str, Any] = dataclasses.field(default_factory=dict)
    body: Any = None


@dataclasses.dataclass
class SendResult:
    """The raw HTTP response and the decoded payload."""

    response: Any
    output: Any


@dataclasses.dataclass
class Response:
    """The HTTP response, the original input and the decoded output."""

    response: Any
    input: Any
    output: Any


@dataclasses.dataclass
class HandlerOpts:
    """The input parser and the sender used by send()."""

    input_parser: Callable[[str, Any], ParsedInput]
    sender: Callable[[str, str, str, RequestData], SendResult]


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class URLEncoder:
    """Encodes URL parameters into lists of strings per key."""

    def encode_url(self, data: Mapping[str, Any]) -> dict[str, list[str]]:
        values: dict[str, list[str]] = {}
        for key, value in data.items():
            if value is None:
                raise ClientError(f"URL parameter {key!r} has no value")
            if isinstance(value, (list, tuple)):
                values[key] = [_format_value(item) for item in value]
            else:
                values[key] = [_format_value(value)]
        return values


def input_field(name: str | None = None, source: str | None = None, **kwargs: Any) -> Any:
    """Declare a dataclass field with a wire name and a request placement."""
    metadata = dict(kwargs.pop("metadata", None) or {})
    if name:
        metadata[_JSON_KEY] = name
    if source:
        metadata[_SOURCE_KEY] = source.value if isinstance(source, Placement) else source
    return dataclasses.field(metadata=metadata, **kwargs)


def send(
    input: Any,
    url: str,
    host: str,
    method: str,
    url_encoder: Any,
    opts: HandlerOpts | None = None,
) -> Response:
    """Parse the input, send the request and return the response with its input."""
    use_opts = opts if opts is not None else default_handler_opts(url_encoder)
    parsed = use_opts.input_parser(method, input)
    request_data = RequestData(
        headers=parsed.headers,
        cookies=parsed.cookies,
        url_parameters=parsed.url_parameters,
        body=parsed.body if parsed.body else None,
    )
    result = use_opts.sender(host, url, method, request_data)
    return Response(response=result.response, input=input, output=result.output)


def default_handler_opts(url_encoder: Any) -> HandlerOpts:
    """Options that parse dataclass inputs and send them over HTTP."""

    def sender(host: str, url: str, method: str, request_data: RequestData) -> SendResult:
        return process_and_send(host, url, method, request_data, url_encoder)

    return HandlerOpts(input_parser=parse_input, sender=sender)


def process_and_send(
    host: str,
    url: str,
    method: str,
    request_data: RequestData,
    url_encoder: Any,
    timeout: float | None = None,
) -> SendResult:
    """Send the request data as JSON and decode the JSON response."""
    if request_data.body is not None and method == "GET":
        raise ClientError("body cannot be set for GET requests")

    payload = marshal_body(request_data.body)
    headers: dict[str, str] = {}
    if request_data.headers is not None:
        headers = dict(request_data.headers)
        if not headers.get(CONTENT_TYPE_HEADER):
            headers[CONTENT_TYPE_HEADER] = APPLICATION_JSON

    full_url = construct_url(host, url, request_data.url_parameters, url_encoder)
    request = _create_request(method, full_url, payload, headers, request_data.cookies)

    open_kwargs = {} if timeout is None else {"timeout": timeout}
    try:
        response = urllib.request.urlopen(request, **open_kwargs)
    except urllib.error.HTTPError as err:
        response = err
    with response:
        body = response.read()
    return SendResult(response=response, output=response_to_payload(body))


def _create_request(
    method: str,
    full_url: str,
    payload: bytes,
    headers: Mapping[str, str],
    cookies: list[tuple[str, str]],
) -> urllib.request.Request:
    try:
        parts = urllib.parse.urlsplit(full_url)
        parts.port  # validates the port
    except ValueError as err:
        raise ClientError(f"invalid URL {full_url!r}: {err}") from err
    if not parts.scheme or not parts.netloc:
        raise ClientError(f"invalid URL {full_url!r}")

    request = urllib.request.Request(
        full_url, data=payload or None, headers=dict(headers), method=method
    )
    if cookies:
        request.add_header("Cookie", "; ".join(f"{name}={value}" for name, value in cookies))
    return request


def marshal_body(body: Any) -> bytes:
    """Encode the body as compact JSON; no body gives empty bytes."""
    if body is None:
        return b""
    try:
        return json.dumps(body, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as err:
        raise ClientError(f"json: {err}") from err


def construct_url(
    host: str,
    path: str,
    url_parameters: Mapping[str, Any] | None,
    url_encoder: Any,
) -> str:
    """Join host and path and append encoded URL parameters if there are any."""
    url = f"{host}{path}"
    if not url_parameters:
        return url
    return f"{url}?{to_url_param_string(url_parameters, url_encoder)}"


def to_url_param_string(params: Mapping[str, Any] | None, url_encoder: Any) -> str:
    """Encode parameters as a query string, sorted by key."""
    if params is None:
        raise ClientError("input map is nil")
    if url_encoder is None:
        raise ClientError("url encoder is nil")
    values = url_encoder.encode_url(params)
    pairs = [
        (key, item)
        for key in sorted(values)
        for item in ([values[key]] if isinstance(values[key], str) else values[key])
    ]
    return urllib.parse.urlencode(pairs)


def response_to_payload(body: bytes) -> Any:
    """Decode a JSON response body."""
    text = body.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except json.JSONDecodeError as err:
        raise ClientError(f"JSON unmarshal error: {err}, body: {text}") from err


def parse_input(method: str, input: Any) -> ParsedInput:
    """Split a dataclass instance into request parts by each field's placement."""
    if input is None:
        raise ClientError("parsed input is nil")
    if not dataclasses.is_dataclass(input) or isinstance(input, type):
        raise ClientError("input must be a dataclass instance")

    parsed = ParsedInput()
    default = determine_default_placement(method)
    for field in dataclasses.fields(input):
        placement = field.metadata.get(_SOURCE_KEY) or default
        name = determine_field_name(field.metadata.get(_JSON_KEY, ""), field.name)
        place_field_value(placement, name, getattr(input, field.name), parsed)
    return parsed


def determine_default_placement(method: str) -> Placement:
    """GET requests carry fields in the URL, everything else in the body."""
    return Placement.URL if method == "GET" else Placement.BODY


def determine_field_name(json_name: str, field_name: str) -> str:
    """Use the name before the first comma of json_name, else the field name."""
    name = (json_name or "").split(",")[0]
    return name or field_name


def place_field_value(placement: Any, name: str, value: Any, parsed: ParsedInput) -> None:
    """Put a value into the part of parsed that placement selects."""
    try:
        where = Placement(placement)
    except ValueError:
        raise ClientError(f"invalid source tag: {placement}") from None

    if where is Placement.URL:
        parsed.url_parameters[name] = value
    elif where is Placement.BODY:
        parsed.body[name] = value
    elif where in (Placement.HEADER, Placement.HEADERS):
        parsed.headers[name] = _format_value(value)
    else:
        parsed.cookies.append((name, _format_value(value)))