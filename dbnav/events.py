from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from dbnav.config import ConnectionConfig
from dbnav.modes import ViewMode
from dbnav.query_builder import TableSource


@dataclass(frozen=True)
class KeyPressed:
    key: str
    character: str | None = None

    @property
    def printable(self) -> str | None:
        if self.character is None or len(self.character) != 1:
            return None
        if not self.character.isprintable():
            return None
        return self.character


@dataclass(frozen=True)
class Resized:
    width: int
    height: int


@dataclass(frozen=True)
class StatusExpired:
    sequence: int


@dataclass(frozen=True)
class OperationSucceeded:
    operation_id: int
    value: object


@dataclass(frozen=True)
class OperationFailed:
    operation_id: int
    error: Exception


@dataclass(frozen=True)
class OperationTimedOut:
    operation_id: int
    timeout_seconds: float | None = None


@dataclass(frozen=True)
class OperationRestarted:
    """Sent to the originating view when a timed-out operation is retried."""

    operation_id: int
    query: str = ""


OperationEvent = Union[OperationSucceeded, OperationFailed, OperationTimedOut]
Event = Union[KeyPressed, Resized, StatusExpired, OperationEvent, OperationRestarted]


# Commands returned by child views.


@dataclass(frozen=True)
class Quit:
    pass


@dataclass(frozen=True)
class GoBack:
    fallback: ViewMode = ViewMode.BROWSER


@dataclass(frozen=True)
class RunQuery:
    query: str
    source: TableSource | None = None


@dataclass(frozen=True)
class CancelQuery:
    pass


@dataclass(frozen=True)
class OpenConnection:
    connection: ConnectionConfig


@dataclass(frozen=True)
class Disconnect:
    pass


@dataclass(frozen=True)
class LoadTables:
    schema: str | None = None


@dataclass(frozen=True)
class LoadColumns:
    schema: str


Command = Union[
    Quit,
    GoBack,
    RunQuery,
    CancelQuery,
    OpenConnection,
    Disconnect,
    LoadTables,
    LoadColumns,
]


# Effects returned by the coordinator to the host application.


@dataclass(frozen=True)
class StartOperation:
    operation_id: int
    label: str
    job: Callable[[], Awaitable[object]]
    timeout_seconds: float | None


@dataclass(frozen=True)
class CancelOperation:
    operation_id: int


Effect = Union[Quit, StartOperation, CancelOperation]
