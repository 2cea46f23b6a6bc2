"""Entity inserts and raw queries over prepared statements.

A preparer has prepare(query) returning a statement; a statement has
execute(*args), query(*args) and close(); an execution result has
last_insert_id() and rows_affected().
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from contextlib import closing
from typing import Any

Inserter = Callable[[Any], tuple[Sequence[str], Sequence[Any]]]


def create_entity(
    entity: Any,
    preparer: Any,
    table_name: str,
    inserter: Inserter,
    sql_util: Any,
) -> int:
    """Insert one entity and return the last insert ID."""
    query, values = insert_query(entity, table_name, inserter)
    return _checked_insert(preparer, query, values, sql_util)


def create_entities(
    entities: Sequence[Any],
    preparer: Any,
    table_name: str,
    inserter: Inserter,
    sql_util: Any,
) -> int:
    """Insert several entities in one statement and return the last insert ID; 0 if none."""
    if not entities:
        return 0
    query, values = insert_many_query(entities, table_name, inserter)
    return _checked_insert(preparer, query, values, sql_util)


def _checked_insert(preparer: Any, query: str, values: Sequence[Any], sql_util: Any) -> int:
    try:
        result = exec_query(preparer, query, values)
    except Exception as err:
        db_error = sql_util.check_db_error(err)
        if db_error is None or db_error is err:
            raise
        raise db_error from err
    return result.last_insert_id()


def insert_column_names(columns: Sequence[str]) -> str:
    """Backtick-quote the columns and join them with commas."""
    return ", ".join(f"`{column}`" for column in columns)


def insert_query(entity: Any, table_name: str, inserter: Inserter) -> tuple[str, list[Any]]:
    """Build a single-row INSERT statement and its values."""
    columns, values = inserter(entity)
    placeholders = ", ".join("?" for _ in values)
    query = (
        f"INSERT INTO `{table_name}` ({insert_column_names(columns)}) VALUES ({placeholders})"
    )
    return query, list(values)


def insert_many_query(
    entities: Sequence[Any], table_name: str, inserter: Inserter
) -> tuple[str, list[Any]]:
    """Build a multi-row INSERT statement; columns come from the first entity."""
    if not entities:
        return "", []

    columns, _ = inserter(entities[0])
    all_values: list[Any] = []
    groups: list[str] = []
    for entity in entities:
        _, values = inserter(entity)
        groups.append("(" + ", ".join("?" for _ in values) + ")")
        all_values.extend(values)

    query = (
        f"INSERT INTO `{table_name}` ({insert_column_names(columns)}) "
        f"VALUES {', '.join(groups)}"
    )
    return query, all_values


def rows_query(preparer: Any, query: str, parameters: Sequence[Any]) -> tuple[Any, Any]:
    """Run a row-returning query; the caller closes the returned rows and statement."""
    stmt = preparer.prepare(query)
    try:
        rows = stmt.query(*parameters)
    except Exception:
        stmt.close()
        raise
    return rows, stmt


def exec_query(preparer: Any, query: str, parameters: Sequence[Any]) -> Any:
    """Prepare and execute a statement, closing it afterwards, and return the result."""
    with closing(preparer.prepare(query)) as stmt:
        return stmt.execute(*parameters)