from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator
from urllib.parse import urlparse

import asyncpg
from asyncpg import Connection

MAX_RESULT_ROWS = 1000
_CLOSE_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class ConnectionParameters:
    host: str
    port: int
    username: str
    password: str
    database_name: str


@dataclass(frozen=True)
class TableInfo:
    name: str
    estimated_rows: int


@dataclass(frozen=True)
class ColumnInfo:
    table_name: str
    name: str
    data_type: str
    nullable: bool


@dataclass(frozen=True)
class TableListing:
    schemas: list[str]
    schema: str
    tables: list[TableInfo]


@dataclass(frozen=True)
class ColumnListing:
    schema: str
    columns: list[ColumnInfo]


@dataclass(frozen=True)
class QueryResult:
    columns: list[str]
    rows: list[tuple[object, ...]]
    truncated: bool = False


def parse_connection_parameters(connection_url: str) -> ConnectionParameters:
    parsed_url = urlparse(connection_url)
    database_name = parsed_url.path.lstrip("/") or "postgres"
    if parsed_url.hostname is None:
        raise ValueError("Missing required connection field: host")
    if parsed_url.username is None:
        raise ValueError("Missing required connection field: username")

    return ConnectionParameters(
        host=parsed_url.hostname,
        port=parsed_url.port or 5432,
        username=parsed_url.username,
        password=parsed_url.password or "",
        database_name=database_name,
    )


@asynccontextmanager
async def _open_connection(
    connection_parameters: ConnectionParameters,
) -> AsyncIterator[Connection]:
    connection = await asyncpg.connect(
        host=connection_parameters.host,
        port=connection_parameters.port,
        user=connection_parameters.username,
        password=connection_parameters.password or None,
        database=connection_parameters.database_name,
    )
    try:
        await connection.execute("SET default_transaction_read_only = on")
        yield connection
    finally:
        await connection.close(timeout=_CLOSE_TIMEOUT_SECONDS)


async def probe_connection(connection_parameters: ConnectionParameters) -> str:
    async with _open_connection(connection_parameters) as connection:
        row = await connection.fetchrow("SELECT current_database() AS name")
    if row is None:
        raise ValueError("Failed to read current database.")
    return row["name"]


async def _fetch_schemas(connection: Connection) -> list[str]:
    query = """
        SELECT schema_name
        FROM information_schema.schemata
        WHERE schema_name NOT LIKE 'pg\\_%'
          AND schema_name <> 'information_schema'
        ORDER BY schema_name
    """
    rows = await connection.fetch(query)
    return [row["schema_name"] for row in rows]


async def _fetch_tables(connection: Connection, schema_name: str) -> list[TableInfo]:
    query = """
        SELECT
            c.relname AS table_name,
            CASE
                WHEN c.reltuples < 0 THEN 0
                ELSE c.reltuples::bigint
            END AS estimated_rows
        FROM pg_class c
        JOIN pg_namespace n ON n.oid = c.relnamespace
        WHERE n.nspname = $1
          AND c.relkind IN ('r', 'v', 'm', 'p')
        ORDER BY c.relname
    """
    rows = await connection.fetch(query, schema_name)
    return [
        TableInfo(
            name=row["table_name"],
            estimated_rows=row["estimated_rows"],
        )
        for row in rows
    ]


async def list_tables(
    connection_parameters: ConnectionParameters,
    schema_name: str | None,
) -> TableListing:
    async with _open_connection(connection_parameters) as connection:
        schemas = await _fetch_schemas(connection)
        if schema_name is None:
            schema_name = "public" if "public" in schemas else next(iter(schemas), "public")
        tables = await _fetch_tables(connection, schema_name)
    return TableListing(schemas=schemas, schema=schema_name, tables=tables)


async def list_columns(
    connection_parameters: ConnectionParameters,
    schema_name: str,
) -> ColumnListing:
    query = """
        SELECT table_name, column_name, data_type, is_nullable
        FROM information_schema.columns
        WHERE table_schema = $1
        ORDER BY table_name, ordinal_position
    """
    async with _open_connection(connection_parameters) as connection:
        rows = await connection.fetch(query, schema_name)
    return ColumnListing(
        schema=schema_name,
        columns=[
            ColumnInfo(
                table_name=row["table_name"],
                name=row["column_name"],
                data_type=row["data_type"],
                nullable=row["is_nullable"] == "YES",
            )
            for row in rows
        ],
    )


async def run_query(
    connection_parameters: ConnectionParameters,
    query: str,
    max_rows: int = MAX_RESULT_ROWS,
) -> QueryResult:
    async with _open_connection(connection_parameters) as connection:
        statement = await connection.prepare(query)
        columns = [attribute.name for attribute in statement.get_attributes()]
        records = await statement.fetch()
    rows = [tuple(record) for record in records[:max_rows]]
    return QueryResult(columns=columns, rows=rows, truncated=len(records) > max_rows)
