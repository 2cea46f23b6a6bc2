"""Database connection configuration, DSN building and pool setup."""

from __future__ import annotations

import dataclasses
import enum
from collections.abc import Callable
from datetime import timedelta
from typing import Any

TCP_DSN_FORMAT = "%s:%s@tcp(%s:%d)/%s?parseTime=true&%s"
UNIX_DSN_FORMAT = "%s:%s@unix(%s/%s)/%s?parseTime=true&%s"


class ConnectionType(str, enum.Enum):
    """How the database is reached."""

    TCP = "tcp"
    UNIX = "unix"


class DatabaseConnectionError(Exception):
    """Raised when a database connection cannot be built, opened or pinged."""


@dataclasses.dataclass
class Config:
    """Settings for a database connection and its pool."""

    user: str = ""
    password: str = ""
    host: str = ""
    port: int = 0
    database: str = ""
    socket_directory: str = ""
    socket_name: str = ""
    parameters: str = ""
    connection_type: ConnectionType | str | None = None
    conn_max_lifetime: timedelta = timedelta(0)
    conn_max_idle_time: timedelta = timedelta(0)
    max_open_conns: int = 0
    max_idle_conns: int = 0
    driver_name: str = ""
    dsn_format: str = ""


def new_default_tcp_config(user: str, password: str, database: str, driver_name: str) -> Config:
    """Config for a TCP connection to localhost:3306 with default pool settings."""
    return Config(
        user=user,
        password=password,
        database=database,
        connection_type=ConnectionType.TCP,
        host="localhost",
        port=3306,
        conn_max_lifetime=timedelta(minutes=10),
        conn_max_idle_time=timedelta(minutes=5),
        max_open_conns=25,
        max_idle_conns=5,
        driver_name=driver_name,
        dsn_format=TCP_DSN_FORMAT,
    )


def new_default_unix_config(
    user: str,
    password: str,
    database: str,
    socket_directory: str,
    socket_name: str,
    driver_name: str,
) -> Config:
    """Config for a Unix socket connection with default pool settings."""
    return Config(
        user=user,
        password=password,
        database=database,
        connection_type=ConnectionType.UNIX,
        socket_directory=socket_directory,
        socket_name=socket_name,
        conn_max_lifetime=timedelta(minutes=10),
        conn_max_idle_time=timedelta(minutes=5),
        max_open_conns=25,
        max_idle_conns=5,
        driver_name=driver_name,
        dsn_format=UNIX_DSN_FORMAT,
    )


def build_dsn(cfg: Config) -> str:
    """Fill the config's DSN format with the fields its connection type needs."""
    try:
        kind = ConnectionType(cfg.connection_type)
    except ValueError:
        raise DatabaseConnectionError(
            f"unsupported connection type: {cfg.connection_type or ''}"
        ) from None

    if kind is ConnectionType.TCP:
        fields: tuple[Any, ...] = (
            cfg.user, cfg.password, cfg.host, cfg.port, cfg.database, cfg.parameters,
        )
    else:
        fields = (
            cfg.user,
            cfg.password,
            cfg.socket_directory,
            cfg.socket_name,
            cfg.database,
            cfg.parameters,
        )
    try:
        return cfg.dsn_format % fields
    except (TypeError, ValueError) as err:
        raise DatabaseConnectionError(f"invalid DSN format: {err}") from err


def connect(cfg: Config, db_factory: Callable[[str, str], Any]) -> Any:
    """Open a database through db_factory, configure its pool and ping it."""
    dsn = build_dsn(cfg)
    try:
        db = db_factory(cfg.driver_name, dsn)
    except Exception as err:
        raise DatabaseConnectionError(f"failed to open database: {err}") from err

    db.set_conn_max_lifetime(cfg.conn_max_lifetime)
    db.set_conn_max_idle_time(cfg.conn_max_idle_time)
    db.set_max_open_conns(cfg.max_open_conns)
    db.set_max_idle_conns(cfg.max_idle_conns)

    try:
        db.ping()
    except Exception as err:
        raise DatabaseConnectionError(f"failed to ping database: {err}") from err
    return db