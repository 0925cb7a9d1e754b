from dataclasses import dataclass
from enum import Enum
import itertools
import logging
from typing import Awaitable, Callable

from dbnav.modes import ViewMode
from dbnav.query_builder import TableSource

logger = logging.getLogger(__name__)


class OperationKind(Enum):
    QUERY = "query"
    CONNECT = "connect"
    METADATA = "metadata"


@dataclass
class PendingOperation:
    operation_id: int
    kind: OperationKind
    origin: ViewMode
    label: str
    job: Callable[[], Awaitable[object]]
    query: str = ""
    source: TableSource | None = None
    fatal_on_failure: bool = False


class OperationTracker:
    """Allocates operation ids and decides which completions are still wanted.

    A completion is accepted at most once, and never after the operation was
    cancelled.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingOperation] = {}

    def start(
        self,
        kind: OperationKind,
        origin: ViewMode,
        label: str,
        job: Callable[[], Awaitable[object]],
        *,
        query: str = "",
        source: TableSource | None = None,
        fatal_on_failure: bool = False,
    ) -> PendingOperation:
        operation = PendingOperation(
            operation_id=next(self._ids),
            kind=kind,
            origin=origin,
            label=label,
            job=job,
            query=query,
            source=source,
            fatal_on_failure=fatal_on_failure,
        )
        self._pending[operation.operation_id] = operation
        logger.info("Started operation %d: %s", operation.operation_id, label)
        return operation

    def restart(self, operation: PendingOperation) -> PendingOperation:
        return self.start(
            operation.kind,
            operation.origin,
            operation.label,
            operation.job,
            query=operation.query,
            source=operation.source,
            fatal_on_failure=operation.fatal_on_failure,
        )

    def resolve(self, operation_id: int) -> PendingOperation | None:
        operation = self._pending.pop(operation_id, None)
        if operation is None:
            logger.debug("Dropped stale completion for operation %d", operation_id)
        return operation

    def cancel(self, operation_id: int) -> bool:
        operation = self._pending.pop(operation_id, None)
        if operation is None:
            return False
        logger.info("Cancelled operation %d: %s", operation_id, operation.label)
        return True

    def latest(self, origin: ViewMode, kind: OperationKind) -> PendingOperation | None:
        matches = [
            operation
            for operation in self._pending.values()
            if operation.origin == origin and operation.kind == kind
        ]
        if not matches:
            return None
        return max(matches, key=lambda operation: operation.operation_id)

    def is_busy(self) -> bool:
        return bool(self._pending)

    def is_pending(self, operation_id: int) -> bool:
        return operation_id in self._pending
