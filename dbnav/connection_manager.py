import logging

from dbnav.config import ConnectionConfig
from dbnav.postgres_driver import (
    ColumnListing,
    ConnectionParameters,
    QueryResult,
    TableListing,
    list_columns,
    list_tables,
    parse_connection_parameters,
    probe_connection,
    run_query,
)

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks the active connection and runs database work against it.

    Each call opens its own short-lived connection, so "connected" means the
    descriptor was parsed and a probe query succeeded.
    """

    def __init__(self) -> None:
        self._connection: ConnectionConfig | None = None
        self._connection_parameters: ConnectionParameters | None = None
        self._database_name = ""

    def is_connected(self) -> bool:
        return self._connection is not None

    def current_connection(self) -> ConnectionConfig | None:
        return self._connection

    @property
    def database_name(self) -> str:
        return self._database_name

    async def connect(self, connection: ConnectionConfig) -> None:
        connection_parameters = parse_connection_parameters(connection.url)
        database_name = await probe_connection(connection_parameters)
        self._connection = connection
        self._connection_parameters = connection_parameters
        self._database_name = database_name
        logger.info("Connected to %s (%s)", connection.name, database_name)

    def disconnect(self) -> None:
        if self._connection is not None:
            logger.info("Disconnected from %s", self._connection.name)
        self._connection = None
        self._connection_parameters = None
        self._database_name = ""

    def _require_connection_parameters(self) -> ConnectionParameters:
        if self._connection_parameters is None:
            raise ValueError("No connection selected.")
        return self._connection_parameters

    async def list_tables(self, schema_name: str | None) -> TableListing:
        return await list_tables(self._require_connection_parameters(), schema_name)

    async def list_columns(self, schema_name: str) -> ColumnListing:
        return await list_columns(self._require_connection_parameters(), schema_name)

    async def execute(self, query: str) -> QueryResult:
        return await run_query(self._require_connection_parameters(), query)
