import asyncio
from dataclasses import replace
import time
from typing import Callable

import pytest

from dbnav.history import HistoryManager
from dbnav.modes import ViewMode
from dbnav.tui import DatabaseNavigatorApp
from conftest import FakeConnectionManager


async def _wait_for(predicate: Callable[[], bool], timeout_seconds: float = 5.0) -> None:
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        if predicate():
            return
        await asyncio.sleep(0.05)
    raise AssertionError("Timed out waiting for condition.")


def _app(app_config, tmp_path, **kwargs) -> tuple[DatabaseNavigatorApp, FakeConnectionManager]:
    connections = FakeConnectionManager()
    app = DatabaseNavigatorApp(
        app_config,
        connections=connections,
        history=HistoryManager(tmp_path / "history.json"),
        export_dir=tmp_path / "exports",
        **kwargs,
    )
    return app, connections


@pytest.mark.asyncio
async def test_starts_on_connection_list(app_config, tmp_path) -> None:
    app, _ = _app(app_config, tmp_path)
    async with app.run_test() as pilot:
        await pilot.pause()
        assert app.model.mode == ViewMode.CONNECTION
        assert "local" in app.model.render()
        assert app.model.width > 0


@pytest.mark.asyncio
async def test_help_overlay_opens_and_closes(app_config, tmp_path) -> None:
    app, _ = _app(app_config, tmp_path)
    async with app.run_test() as pilot:
        await pilot.pause()
        await pilot.press("?")
        await pilot.pause()
        assert app.model.showing_help
        await pilot.press("x")
        await pilot.pause()
        assert not app.model.showing_help


@pytest.mark.asyncio
async def test_unknown_startup_connection_shows_error(app_config, tmp_path) -> None:
    app, _ = _app(app_config, tmp_path, initial_connection_name="missing")
    async with app.run_test() as pilot:
        await pilot.pause()
        frame = app.query_one("#frame")
        assert app.model.fatal_error is not None
        assert frame.has_class("fatal")
        await pilot.press("escape")
        await pilot.pause()
        assert app.model.fatal_error is None
        assert not frame.has_class("fatal")


@pytest.mark.asyncio
async def test_startup_connection_loads_browser(app_config, tmp_path) -> None:
    app, _ = _app(app_config, tmp_path, initial_connection_name="local")
    async with app.run_test() as pilot:
        await _wait_for(lambda: app.model.mode == ViewMode.BROWSER)
        browser = app.model.view(ViewMode.BROWSER)
        await _wait_for(lambda: not browser.loading)
        assert [table.name for table in browser.tables] == ["gadgets", "widgets"]
        await pilot.press("tab")
        await pilot.pause()
        assert app.model.mode == ViewMode.EDITOR


@pytest.mark.asyncio
async def test_editor_query_reaches_results(app_config, tmp_path) -> None:
    app, connections = _app(app_config, tmp_path, initial_connection_name="local")
    async with app.run_test() as pilot:
        await _wait_for(lambda: app.model.mode == ViewMode.BROWSER)
        await _wait_for(lambda: not app.model.view(ViewMode.BROWSER).loading)
        await pilot.press("e", "ctrl+r")
        await _wait_for(lambda: app.model.mode == ViewMode.RESULTS)
        assert connections.executed[-1].startswith('SELECT * FROM "public"."gadgets"')
        assert app.model.view(ViewMode.RESULTS).columns == ["one"]


@pytest.mark.asyncio
async def test_slow_query_times_out_into_retry_prompt(app_config, tmp_path) -> None:
    config = replace(app_config, query_timeout_seconds=0.1)
    app, connections = _app(config, tmp_path, initial_connection_name="local")
    async with app.run_test() as pilot:
        await _wait_for(lambda: app.model.mode == ViewMode.BROWSER)
        await _wait_for(lambda: not app.model.view(ViewMode.BROWSER).loading)
        connections.query_delay_seconds = 2.0
        await pilot.press("e", "ctrl+r")
        await _wait_for(lambda: app.model.retry_prompt.is_active())
        await pilot.press("j")
        await pilot.pause()
        assert app.model.retry_prompt.is_active()
        await pilot.press("escape")
        await pilot.pause()
        assert not app.model.retry_prompt.is_active()
        assert app.model.mode == ViewMode.EDITOR
