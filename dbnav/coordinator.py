from functools import partial
import logging
from pathlib import Path
from typing import Awaitable, Callable

from rich.markup import escape

from dbnav.config import ConfigStore, ConnectionConfig, find_connection
from dbnav.connection_manager import ConnectionManager
from dbnav.events import (
    CancelOperation,
    CancelQuery,
    Command,
    Disconnect,
    Effect,
    Event,
    GoBack,
    KeyPressed,
    LoadColumns,
    LoadTables,
    OpenConnection,
    OperationFailed,
    OperationRestarted,
    OperationSucceeded,
    OperationTimedOut,
    Quit,
    Resized,
    RunQuery,
    StartOperation,
    StatusExpired,
)
from dbnav.help import is_help_safe, render_help
from dbnav.history import HistoryManager
from dbnav.keymap import (
    CYCLE_KEY,
    HELP_CHARACTER,
    INTERRUPT_KEY,
    QUIT_KEY,
    REVERSE_CYCLE_KEY,
    format_bindings,
    is_cancel,
)
from dbnav.modes import CYCLE_ORDER, INDICATOR_ORDER, ViewMode, next_in_cycle
from dbnav.operations import OperationKind, OperationTracker, PendingOperation
from dbnav.postgres_driver import QueryResult
from dbnav.query_builder import TableSource
from dbnav.retry_prompt import RetryPrompt
from dbnav.tool_views import ChatView, ColumnsView, ExportView, SchemaView, WhereView
from dbnav.views import (
    BrowserView,
    ChildView,
    ConnectionView,
    EditorView,
    HistoryView,
    ResultsView,
)

logger = logging.getLogger(__name__)

Rule = tuple[Callable[[Event], bool], Callable[[Event], Effect | None]]


def render_error(message: str) -> str:
    lines = [
        "[bold]Error[/]",
        "",
        escape(message),
        "",
        format_bindings([("esc", "Dismiss"), ("q", "Quit"), ("ctrl+c", "Exit")]),
    ]
    return "\n".join(lines)


class MainModel:
    """Routes every input event to exactly one handler.

    Events are matched against an ordered rule table; the first matching rule
    consumes the event. Child views never see keys claimed by an earlier rule,
    and background completions are accepted only while their operation is
    still pending.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        connections: ConnectionManager,
        history: HistoryManager,
        export_dir: Path | None = None,
    ) -> None:
        self._config_store = config_store
        self._connections = connections
        self._history = history
        self._mode = ViewMode.CONNECTION
        self._width = 0
        self._height = 0
        self._fatal_error: Exception | None = None
        self._showing_help = False
        self._view_history: list[ViewMode] = []
        self._status_message = ""
        self._status_sequence = 0
        self._retry_prompt = RetryPrompt()
        self._timed_out: PendingOperation | None = None
        self._operations = OperationTracker()

        editor = EditorView()
        self._connection_view = ConnectionView(config_store)
        self._results = ResultsView()
        self._browser = BrowserView(config_store, editor)
        self._views: dict[ViewMode, ChildView] = {
            ViewMode.CONNECTION: self._connection_view,
            ViewMode.BROWSER: self._browser,
            ViewMode.EDITOR: editor,
            ViewMode.RESULTS: self._results,
            ViewMode.HISTORY: HistoryView(history, editor),
            ViewMode.EXPORT: ExportView(self._results, export_dir or Path.cwd()),
            ViewMode.WHERE: WhereView(self._results),
            ViewMode.COLUMNS: ColumnsView(self._results),
            ViewMode.CHAT: ChatView(self._browser),
            ViewMode.SCHEMA: SchemaView(self._browser),
        }
        missing = set(ViewMode) - set(self._views)
        if missing:
            raise ValueError(f"No view registered for: {sorted(missing)}")

        self._rules: list[Rule] = [
            (self._is_interrupt, lambda event: Quit()),
            (lambda event: isinstance(event, Resized), self._handle_resize),
            (lambda event: isinstance(event, StatusExpired), self._handle_status_expired),
            (self._is_operation_event, self._handle_operation_event),
            (self._is_fatal_key, self._handle_fatal_key),
            (self._is_retry_key, self._handle_retry_key),
            (self._is_help_dismiss, self._handle_help_dismiss),
            (self._is_help_request, self._handle_help_request),
            (self._is_cycle_key, self._handle_cycle_key),
            (lambda event: isinstance(event, KeyPressed), self._delegate),
        ]

    # Accessors

    @property
    def mode(self) -> ViewMode:
        return self._mode

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def fatal_error(self) -> Exception | None:
        return self._fatal_error

    @property
    def showing_help(self) -> bool:
        return self._showing_help

    @property
    def retry_prompt(self) -> RetryPrompt:
        return self._retry_prompt

    @property
    def status_message(self) -> str:
        return self._status_message

    @property
    def status_sequence(self) -> int:
        return self._status_sequence

    @property
    def view_history(self) -> list[ViewMode]:
        return list(self._view_history)

    @property
    def operations(self) -> OperationTracker:
        return self._operations

    def view(self, mode: ViewMode) -> ChildView:
        return self._views[mode]

    @property
    def active_view(self) -> ChildView:
        return self._views[self._mode]

    # Entry points

    def start_with_connection(self, connection_name: str) -> Effect | None:
        try:
            connection = find_connection(self._config_store.config, connection_name)
        except ValueError as error:
            self._set_fatal_error(error)
            return None
        self._connection_view.connecting = True
        return self._start_connect(connection, ViewMode.CONNECTION, fatal_on_failure=True)

    def update(self, event: Event) -> Effect | None:
        for guard, handler in self._rules:
            if guard(event):
                return handler(event)
        return None

    # Guards

    def _is_interrupt(self, event: Event) -> bool:
        return isinstance(event, KeyPressed) and event.key == INTERRUPT_KEY

    def _is_operation_event(self, event: Event) -> bool:
        return isinstance(event, (OperationSucceeded, OperationFailed, OperationTimedOut))

    def _is_fatal_key(self, event: Event) -> bool:
        return isinstance(event, KeyPressed) and self._fatal_error is not None

    def _is_retry_key(self, event: Event) -> bool:
        return isinstance(event, KeyPressed) and self._retry_prompt.is_active()

    def _is_help_dismiss(self, event: Event) -> bool:
        return isinstance(event, KeyPressed) and self._showing_help

    def _is_help_request(self, event: Event) -> bool:
        if not isinstance(event, KeyPressed):
            return False
        if HELP_CHARACTER not in (event.key, event.character):
            return False
        return is_help_safe(self._mode, self.active_view)

    def _is_cycle_key(self, event: Event) -> bool:
        # The connection form uses tab to move between its fields.
        return (
            isinstance(event, KeyPressed)
            and event.key in (CYCLE_KEY, REVERSE_CYCLE_KEY)
            and self._mode != ViewMode.CONNECTION
        )

    # Handlers

    def _handle_resize(self, event: Resized) -> Effect | None:
        self._width = event.width
        self._height = event.height
        for view in self._views.values():
            view.update(event)
        return None

    def _handle_status_expired(self, event: StatusExpired) -> Effect | None:
        if event.sequence == self._status_sequence:
            self._status_message = ""
        return None

    def _handle_fatal_key(self, event: KeyPressed) -> Effect | None:
        if event.key == QUIT_KEY:
            return Quit()
        if is_cancel(event.key):
            logger.info("Dismissed error: %s", self._fatal_error)
            self._fatal_error = None
        return None

    def _handle_retry_key(self, event: KeyPressed) -> Effect | None:
        choice, _ = self._retry_prompt.handle_key(event.key)
        if self._retry_prompt.is_active():
            return None
        operation = self._timed_out
        self._timed_out = None
        if choice is None:
            self._set_status("Retry cancelled.")
            return None
        if choice.save:
            self._config_store.set_preferred_timeout_seconds(int(choice.timeout_seconds))
            logger.info("Saved preferred timeout of %ds", int(choice.timeout_seconds))
        if operation is None:
            return None
        return self._restart(operation, choice.timeout_seconds)

    def _handle_help_dismiss(self, event: KeyPressed) -> Effect | None:
        self._showing_help = False
        return None

    def _handle_help_request(self, event: KeyPressed) -> Effect | None:
        self._showing_help = True
        return None

    def _handle_cycle_key(self, event: KeyPressed) -> Effect | None:
        if event.key == REVERSE_CYCLE_KEY:
            return None
        if not self._connections.is_connected():
            return None
        self._view_history = []
        command = self._set_mode(next_in_cycle(self._mode))
        return self._apply_command(command, self._mode)

    def _delegate(self, event: KeyPressed) -> Effect | None:
        origin = self._mode
        next_mode, command = self._views[origin].update(event)
        enter_command = self._navigate(next_mode)
        effect = self._apply_command(command, origin)
        if effect is None and enter_command is not None:
            effect = self._apply_command(enter_command, self._mode)
        return effect

    # Navigation

    def _set_mode(self, mode: ViewMode) -> Command | None:
        if mode != self._mode:
            logger.debug("Switching view %s -> %s", self._mode.label, mode.label)
        self._mode = mode
        return self._views[mode].on_enter()

    def _navigate(self, mode: ViewMode) -> Command | None:
        if mode == self._mode:
            return None
        if self._view_history and self._view_history[-1] == mode:
            self._view_history.pop()
        else:
            self._view_history.append(self._mode)
        return self._set_mode(mode)

    def _go_back(self, fallback: ViewMode) -> Command | None:
        if self._view_history:
            return self._set_mode(self._view_history.pop())
        if fallback == self._mode:
            return None
        return self._set_mode(fallback)

    # Commands

    def _apply_command(self, command: Command | None, origin: ViewMode) -> Effect | None:
        if command is None:
            return None
        if isinstance(command, Quit):
            return command
        if isinstance(command, GoBack):
            return self._apply_command(self._go_back(command.fallback), self._mode)
        if isinstance(command, RunQuery):
            return self._start(
                OperationKind.QUERY,
                origin,
                "Running query",
                partial(self._connections.execute, command.query),
                query=command.query,
                source=command.source,
            )
        if isinstance(command, CancelQuery):
            return self._cancel_query(origin)
        if isinstance(command, OpenConnection):
            return self._start_connect(command.connection, origin)
        if isinstance(command, Disconnect):
            self._disconnect()
            return None
        if isinstance(command, LoadTables):
            return self._start(
                OperationKind.METADATA,
                origin,
                "Loading tables",
                partial(self._connections.list_tables, command.schema),
            )
        if isinstance(command, LoadColumns):
            return self._start(
                OperationKind.METADATA,
                origin,
                "Loading columns",
                partial(self._connections.list_columns, command.schema),
            )
        raise ValueError(f"Unknown command: {command!r}")

    def _cancel_query(self, origin: ViewMode) -> Effect | None:
        operation = self._operations.latest(origin, OperationKind.QUERY)
        if operation is None or not self._operations.cancel(operation.operation_id):
            return None
        self._set_status("Query cancelled.")
        return CancelOperation(operation.operation_id)

    def _disconnect(self) -> None:
        self._connections.disconnect()
        self._browser.reset()
        self._browser.loading = False
        self._view_history = []
        self._set_mode(ViewMode.CONNECTION)
        self._set_status("Disconnected.")

    # Operations

    def _start(
        self,
        kind: OperationKind,
        origin: ViewMode,
        label: str,
        job: Callable[[], Awaitable[object]],
        *,
        query: str = "",
        source: TableSource | None = None,
        fatal_on_failure: bool = False,
    ) -> StartOperation:
        operation = self._operations.start(
            kind,
            origin,
            label,
            job,
            query=query,
            source=source,
            fatal_on_failure=fatal_on_failure,
        )
        return StartOperation(
            operation_id=operation.operation_id,
            label=label,
            job=job,
            timeout_seconds=self._config_store.config.query_timeout_seconds,
        )

    def _start_connect(
        self, connection: ConnectionConfig, origin: ViewMode, fatal_on_failure: bool = False
    ) -> StartOperation:
        return self._start(
            OperationKind.CONNECT,
            origin,
            f"Connecting to {connection.name}",
            partial(self._connections.connect, connection),
            fatal_on_failure=fatal_on_failure,
        )

    def _restart(self, operation: PendingOperation, timeout_seconds: float) -> StartOperation:
        restarted = self._operations.restart(operation)
        logger.info(
            "Retrying operation %d as %d with a %ss timeout",
            operation.operation_id,
            restarted.operation_id,
            timeout_seconds,
        )
        self._views[restarted.origin].update(
            OperationRestarted(restarted.operation_id, restarted.query)
        )
        return StartOperation(
            operation_id=restarted.operation_id,
            label=restarted.label,
            job=restarted.job,
            timeout_seconds=timeout_seconds,
        )

    def _handle_operation_event(
        self, event: OperationSucceeded | OperationFailed | OperationTimedOut
    ) -> Effect | None:
        operation = self._operations.resolve(event.operation_id)
        if operation is None:
            return None
        if isinstance(event, OperationTimedOut):
            return self._handle_timeout(operation, event)
        succeeded = isinstance(event, OperationSucceeded)
        if succeeded:
            self._retry_prompt.set_auto_retried(False)
        else:
            logger.warning("%s failed: %s", operation.label, event.error)
            if operation.fatal_on_failure:
                self._forward(operation.origin, event)
                self._set_fatal_error(event.error)
                return None
        if operation.kind is OperationKind.QUERY:
            self._history.record(
                operation.query, succeeded, self._connections.database_name
            )
            if succeeded and isinstance(event.value, QueryResult):
                self._results.show(event.value, operation.query, operation.source)
                self._set_status(f"Query returned {len(self._results.rows)} rows.")
        if operation.kind is OperationKind.CONNECT and succeeded:
            self._forward(operation.origin, event)
            return self._on_connected()
        return self._forward(operation.origin, event)

    def _handle_timeout(
        self, operation: PendingOperation, event: OperationTimedOut
    ) -> Effect | None:
        logger.warning("%s timed out after %ss", operation.label, event.timeout_seconds)
        preferred = self._config_store.preferred_timeout_seconds()
        if preferred > 0 and not self._retry_prompt.auto_retried():
            self._retry_prompt.set_auto_retried(True)
            return self._restart(operation, preferred)
        if self._retry_prompt.is_active():
            # The prompt already owns another operation; this one just fails.
            self._set_status(f"{operation.label} timed out.")
            return self._forward(operation.origin, event)
        self._forward(operation.origin, event)
        self._timed_out = operation
        self._showing_help = False
        self._retry_prompt.show(operation.query)
        return None

    def _forward(self, origin: ViewMode, event: Event) -> Effect | None:
        next_mode, command = self._views[origin].update(event)
        # Completions only move the user if they are still looking at the origin.
        enter_command = None
        if origin == self._mode:
            enter_command = self._navigate(next_mode)
        effect = self._apply_command(command, origin)
        if effect is None and enter_command is not None:
            effect = self._apply_command(enter_command, self._mode)
        return effect

    def _on_connected(self) -> Effect | None:
        self._browser.reset()
        self._view_history = []
        self._set_mode(ViewMode.BROWSER)
        connection = self._connections.current_connection()
        if connection is not None:
            self._set_status(f"Connected to {connection.name}.")
        return self._apply_command(LoadTables(), ViewMode.BROWSER)

    # Status and errors

    def _set_status(self, message: str) -> None:
        self._status_sequence += 1
        self._status_message = message

    def _set_fatal_error(self, error: Exception) -> None:
        logger.error("Fatal error: %s", error)
        self._fatal_error = error
        self._showing_help = False

    # Rendering

    def render(self) -> str:
        if self._fatal_error is not None:
            return render_error(str(self._fatal_error))
        if self._showing_help:
            return render_help(self._mode)
        parts = [self._render_view_indicator()]
        status_bar = self._render_status_bar()
        if status_bar:
            parts.append(status_bar)
        parts.append("")
        view_height = max(1, self._height - len(parts))
        parts.append(self.active_view.render(self._width, view_height))
        if self._retry_prompt.is_active():
            parts.extend(["", self._retry_prompt.view()])
        return "\n".join(parts)

    def _render_view_indicator(self) -> str:
        labels = []
        for mode in INDICATOR_ORDER:
            if mode == self._mode:
                labels.append(f"[reverse] {mode.label} [/]")
            elif mode in CYCLE_ORDER:
                labels.append(f" {mode.label} ")
            else:
                labels.append(f"[dim] {mode.label} [/]")
        return "".join(labels)

    def _render_status_bar(self) -> str:
        connection = self._connections.current_connection()
        if self._mode == ViewMode.CONNECTION or connection is None:
            return f"[green]{escape(self._status_message)}[/]" if self._status_message else ""
        parts = [f"[bold]{escape(connection.name)}[/]"]
        if self._connections.database_name:
            parts.append(f"db: {escape(self._connections.database_name)}")
        if self._browser.schema:
            parts.append(f"schema: {escape(self._browser.schema)}")
        if self._operations.is_busy():
            parts.append("[rgb(255,170,60)]Working...[/]")
        if self._status_message:
            parts.append(f"[green]{escape(self._status_message)}[/]")
        return " │ ".join(parts)
