import asyncio
from functools import partial
import logging
from pathlib import Path

from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.events import Key, Resize
from textual.message import Message
from textual.widgets import Header, Static
from textual.worker import Worker

from dbnav.config import AppConfig, ConfigStore
from dbnav.connection_manager import ConnectionManager
from dbnav.coordinator import MainModel
from dbnav.events import (
    CancelOperation,
    Effect,
    Event,
    KeyPressed,
    OperationEvent,
    OperationFailed,
    OperationSucceeded,
    OperationTimedOut,
    Quit,
    Resized,
    StartOperation,
    StatusExpired,
)
from dbnav.history import HistoryManager
from dbnav.keymap import CYCLE_KEY, INTERRUPT_KEY, REVERSE_CYCLE_KEY

logger = logging.getLogger(__name__)

STATUS_MESSAGE_SECONDS = 3.0


class NavigatorFrame(Static, can_focus=True):
    """Single focusable surface that hands every key to the app."""

    class KeyCaptured(Message):
        def __init__(self, key: str, character: str | None) -> None:
            super().__init__()
            self.key = key
            self.character = character

    def on_key(self, event: Key) -> None:
        # Stopped here so focus traversal and app bindings never see it.
        event.prevent_default()
        event.stop()
        self.post_message(self.KeyCaptured(event.key, event.character))


class OperationFinished(Message):
    def __init__(self, event: OperationEvent) -> None:
        super().__init__()
        self.event = event


class DatabaseNavigatorApp(App):
    TITLE = "dbnav"

    DEFAULT_CSS = """
    #frame {
        height: 1fr;
        padding: 0 1;
        text-wrap: wrap;
    }

    #frame.fatal {
        background: rgb(90, 10, 10);
        border: heavy rgb(200, 60, 60);
        color: rgb(255, 230, 230);
    }
    """

    BINDINGS = [
        Binding(INTERRUPT_KEY, "forward_key('ctrl+c')", "Quit", priority=True, show=False),
        # Focus traversal would otherwise claim these before the frame sees them.
        Binding(CYCLE_KEY, "forward_key('tab')", "Next view", priority=True, show=False),
        Binding(
            REVERSE_CYCLE_KEY,
            "forward_key('shift+tab')",
            "Previous field",
            priority=True,
            show=False,
        ),
    ]

    def __init__(
        self,
        config: AppConfig,
        initial_connection_name: str | None = None,
        connections: ConnectionManager | None = None,
        history: HistoryManager | None = None,
        export_dir: Path | None = None,
    ) -> None:
        super().__init__()
        self._config_store = ConfigStore(config)
        self._initial_connection_name = initial_connection_name or ""
        self._model = MainModel(
            self._config_store,
            connections or ConnectionManager(),
            history or HistoryManager(),
            export_dir=export_dir,
        )
        self._operation_workers: dict[int, Worker] = {}
        self._last_status_sequence = 0

    @property
    def model(self) -> MainModel:
        return self._model

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical():
            yield NavigatorFrame("", id="frame")

    def on_mount(self) -> None:
        self._frame().focus()
        self.feed_event(Resized(self.size.width, self.size.height))
        if self._initial_connection_name:
            self._run_effect(
                self._model.start_with_connection(self._initial_connection_name)
            )
        self._refresh_frame()

    def on_resize(self, event: Resize) -> None:
        self.feed_event(Resized(event.size.width, event.size.height))

    def action_forward_key(self, key: str) -> None:
        self.feed_event(KeyPressed(key))

    @on(NavigatorFrame.KeyCaptured)
    def _on_key_captured(self, message: NavigatorFrame.KeyCaptured) -> None:
        self.feed_event(KeyPressed(message.key, message.character))

    @on(OperationFinished)
    def _on_operation_finished(self, message: OperationFinished) -> None:
        self.feed_event(message.event)

    def feed_event(self, event: Event) -> None:
        effect = self._model.update(event)
        self._run_effect(effect)
        self._schedule_status_expiry()
        self._refresh_frame()

    def _run_effect(self, effect: Effect | None) -> None:
        if effect is None:
            return
        if isinstance(effect, Quit):
            self.exit()
        elif isinstance(effect, StartOperation):
            self._operation_workers[effect.operation_id] = self.run_worker(
                self._run_operation(effect),
                name=effect.label,
                group="operations",
                exit_on_error=False,
            )
        elif isinstance(effect, CancelOperation):
            worker = self._operation_workers.pop(effect.operation_id, None)
            if worker is not None:
                worker.cancel()

    async def _run_operation(self, operation: StartOperation) -> None:
        try:
            value = await asyncio.wait_for(
                operation.job(), timeout=operation.timeout_seconds
            )
        except asyncio.TimeoutError:
            event: OperationEvent = OperationTimedOut(
                operation.operation_id, operation.timeout_seconds
            )
        except Exception as error:
            logger.debug("Operation %d raised", operation.operation_id, exc_info=True)
            event = OperationFailed(operation.operation_id, error)
        else:
            event = OperationSucceeded(operation.operation_id, value)
        finally:
            self._operation_workers.pop(operation.operation_id, None)
        self.post_message(OperationFinished(event))

    def _schedule_status_expiry(self) -> None:
        sequence = self._model.status_sequence
        if sequence == self._last_status_sequence:
            return
        self._last_status_sequence = sequence
        if self._model.status_message:
            self.set_timer(
                STATUS_MESSAGE_SECONDS,
                partial(self.feed_event, StatusExpired(sequence)),
            )

    def _frame(self) -> NavigatorFrame:
        return self.query_one("#frame", NavigatorFrame)

    def _refresh_frame(self) -> None:
        frame = self._frame()
        frame.update(self._model.render())
        frame.set_class(self._model.fatal_error is not None, "fatal")
