import pytest

from dbnav.config import load_config
from dbnav.coordinator import MainModel
from dbnav.events import (
    CancelOperation,
    KeyPressed,
    OperationFailed,
    OperationSucceeded,
    OperationTimedOut,
    Quit,
    Resized,
    StartOperation,
    StatusExpired,
)
from dbnav.modes import ViewMode
from dbnav.postgres_driver import QueryResult
from conftest import press, settle


def _open_editor_and_run(model: MainModel) -> StartOperation:
    press(model, "e")
    effect = press(model, "ctrl+r")
    assert isinstance(effect, StartOperation)
    return effect


def _time_out(model: MainModel) -> StartOperation:
    effect = _open_editor_and_run(model)
    assert model.update(OperationTimedOut(effect.operation_id, 30)) is None
    return effect


def test_connected_model_starts_in_browser_with_tables(connected_model: MainModel) -> None:
    browser = connected_model.view(ViewMode.BROWSER)
    assert connected_model.mode == ViewMode.BROWSER
    assert [table.name for table in browser.tables] == ["gadgets", "widgets"]
    assert browser.schema == "public"
    assert connected_model.view_history == []


@pytest.mark.parametrize(
    "setup",
    ["fatal", "help", "retry", "editor"],
)
def test_interrupt_quits_from_any_state(connected_model: MainModel, setup: str) -> None:
    if setup == "fatal":
        connected_model.start_with_connection("missing")
        assert connected_model.fatal_error is not None
    elif setup == "help":
        press(connected_model, "?")
        assert connected_model.showing_help
    elif setup == "retry":
        _time_out(connected_model)
        assert connected_model.retry_prompt.is_active()
    else:
        press(connected_model, "e")
    assert isinstance(press(connected_model, "ctrl+c"), Quit)


def test_resize_applies_during_fatal_error(model: MainModel) -> None:
    model.start_with_connection("missing")
    assert model.update(Resized(120, 40)) is None
    assert (model.width, model.height) == (120, 40)
    assert model.fatal_error is not None
    assert model.mode == ViewMode.CONNECTION
    assert model.view(ViewMode.RESULTS).width == 120
    assert model.view(ViewMode.SCHEMA).height == 40


def test_unknown_startup_connection_is_fatal(model: MainModel) -> None:
    assert model.start_with_connection("missing") is None
    assert isinstance(model.fatal_error, ValueError)
    assert str(model.fatal_error) == "Unknown connection: missing"
    assert "Unknown connection: missing" in model.render()


def test_startup_connect_failure_is_fatal(model: MainModel) -> None:
    effect = model.start_with_connection("local")
    assert isinstance(effect, StartOperation)
    error = OSError("connection refused")
    model.update(OperationFailed(effect.operation_id, error))
    assert model.fatal_error is error
    assert model.mode == ViewMode.CONNECTION


def test_fatal_error_swallows_keys_until_dismissed(model: MainModel) -> None:
    model.start_with_connection("missing")
    press(model, "n")
    assert model.view(ViewMode.CONNECTION).sub_mode == "list"
    assert model.fatal_error is not None

    assert press(model, "escape") is None
    assert model.fatal_error is None
    assert model.mode == ViewMode.CONNECTION


def test_fatal_error_quit_key(model: MainModel) -> None:
    model.start_with_connection("missing")
    assert isinstance(press(model, "q"), Quit)


def test_fatal_error_markup_is_escaped(model: MainModel) -> None:
    model.start_with_connection("[bold]prod")
    assert "\\[bold]prod" in model.render()


def test_form_connect_failure_stays_in_view(model: MainModel) -> None:
    effect = press(model, "enter")
    assert isinstance(effect, StartOperation)
    model.update(OperationFailed(effect.operation_id, OSError("refused")))
    connection_view = model.view(ViewMode.CONNECTION)
    assert model.fatal_error is None
    assert "refused" in connection_view.error
    assert not connection_view.connecting


def test_help_opens_and_any_key_dismisses(connected_model: MainModel) -> None:
    connected_model.update(KeyPressed("question_mark", "?"))
    assert connected_model.showing_help
    assert "Keyboard Shortcuts" in connected_model.render()

    press(connected_model, "e")
    assert not connected_model.showing_help
    assert connected_model.mode == ViewMode.BROWSER


def test_help_key_types_into_editor(connected_model: MainModel) -> None:
    press(connected_model, "e")
    editor = connected_model.view(ViewMode.EDITOR)
    before = editor.text
    press(connected_model, "?")
    assert not connected_model.showing_help
    assert editor.text == before + "?"


def test_help_key_types_into_browser_filter(connected_model: MainModel) -> None:
    press(connected_model, "/", "?")
    browser = connected_model.view(ViewMode.BROWSER)
    assert not connected_model.showing_help
    assert browser.filter_input.value == "?"


def test_help_key_types_into_connection_form(model: MainModel) -> None:
    press(model, "n", "?")
    assert not model.showing_help
    assert model.view(ViewMode.CONNECTION).name_input.value == "?"


def test_tab_cycles_through_main_views(connected_model: MainModel) -> None:
    visited = []
    for _ in range(5):
        press(connected_model, "tab")
        visited.append(connected_model.mode)
    assert visited == [
        ViewMode.EDITOR,
        ViewMode.RESULTS,
        ViewMode.HISTORY,
        ViewMode.CHAT,
        ViewMode.BROWSER,
    ]
    assert connected_model.view_history == []


def test_tab_from_non_cycle_view_jumps_to_browser(connected_model: MainModel) -> None:
    settle(connected_model, press(connected_model, "s"))
    assert connected_model.mode == ViewMode.SCHEMA
    press(connected_model, "tab")
    assert connected_model.mode == ViewMode.BROWSER


def test_tab_is_noop_without_connection(connected_model: MainModel, fake_connections) -> None:
    fake_connections.disconnect()
    assert press(connected_model, "tab") is None
    assert connected_model.mode == ViewMode.BROWSER


def test_shift_tab_is_consumed_outside_connection(connected_model: MainModel) -> None:
    press(connected_model, "e")
    editor = connected_model.view(ViewMode.EDITOR)
    before = editor.text
    press(connected_model, "shift+tab")
    assert connected_model.mode == ViewMode.EDITOR
    assert editor.text == before


def test_tab_in_connection_mode_goes_to_form(model: MainModel) -> None:
    press(model, "n", "tab")
    assert model.mode == ViewMode.CONNECTION
    assert model.view(ViewMode.CONNECTION).focus_index == 1


def test_navigation_stack_push_and_pop(connected_model: MainModel) -> None:
    press(connected_model, "e")
    assert connected_model.mode == ViewMode.EDITOR
    assert connected_model.view_history == [ViewMode.BROWSER]
    press(connected_model, "escape")
    assert connected_model.mode == ViewMode.BROWSER
    assert connected_model.view_history == []


def test_query_success_records_history_and_shows_results(
    connected_model: MainModel, history
) -> None:
    effect = _open_editor_and_run(connected_model)
    assert effect.timeout_seconds == 30
    settle(connected_model, effect)

    results = connected_model.view(ViewMode.RESULTS)
    assert connected_model.mode == ViewMode.RESULTS
    assert results.columns == ["one"]
    entries = history.entries()
    assert len(entries) == 1
    assert entries[0].success
    assert entries[0].database == "appdb"


def test_query_failure_stays_in_editor(connected_model: MainModel, history) -> None:
    effect = _open_editor_and_run(connected_model)
    connected_model.update(OperationFailed(effect.operation_id, RuntimeError("syntax error")))
    assert connected_model.mode == ViewMode.EDITOR
    assert connected_model.view(ViewMode.EDITOR).error == "syntax error"
    assert not history.entries()[0].success


def test_opening_table_from_browser_shows_results(connected_model: MainModel, fake_connections) -> None:
    settle(connected_model, press(connected_model, "enter"))
    results = connected_model.view(ViewMode.RESULTS)
    assert connected_model.mode == ViewMode.RESULTS
    assert results.source.table == "gadgets"
    assert fake_connections.executed == [
        'SELECT * FROM "public"."gadgets" LIMIT 51 OFFSET 0'
    ]


def test_completion_does_not_move_user_who_left_origin(connected_model: MainModel) -> None:
    effect = _open_editor_and_run(connected_model)
    press(connected_model, "tab", "tab")
    assert connected_model.mode == ViewMode.HISTORY
    connected_model.update(
        OperationSucceeded(effect.operation_id, QueryResult(["one"], [(1,)]))
    )
    assert connected_model.mode == ViewMode.HISTORY
    assert connected_model.view(ViewMode.RESULTS).result is not None


def test_timeout_shows_retry_prompt(connected_model: MainModel) -> None:
    effect = _time_out(connected_model)
    prompt = connected_model.retry_prompt
    assert prompt.is_active()
    assert prompt.timed_out_query() == connected_model.view(ViewMode.EDITOR).text.strip()
    assert "Operation timed out." in connected_model.render()
    assert not connected_model.operations.is_pending(effect.operation_id)


def test_retry_prompt_swallows_other_keys(connected_model: MainModel) -> None:
    _time_out(connected_model)
    editor = connected_model.view(ViewMode.EDITOR)
    before = editor.text
    assert press(connected_model, "j", "tab", "?") is None
    assert editor.text == before
    assert connected_model.mode == ViewMode.EDITOR
    assert not connected_model.showing_help
    assert connected_model.retry_prompt.is_active()


def test_retry_choice_saves_and_restarts(connected_model: MainModel, config_store) -> None:
    first = _time_out(connected_model)
    effect = press(connected_model, "2")
    assert isinstance(effect, StartOperation)
    assert effect.operation_id != first.operation_id
    assert effect.timeout_seconds == 120
    assert config_store.preferred_timeout_seconds() == 120
    assert load_config().preferred_timeout_seconds == 120
    assert not connected_model.retry_prompt.is_active()


def test_unbounded_retry_is_not_saved(connected_model: MainModel, config_store) -> None:
    _time_out(connected_model)
    effect = press(connected_model, "4")
    assert isinstance(effect, StartOperation)
    assert effect.timeout_seconds == 24 * 60 * 60
    assert config_store.preferred_timeout_seconds() == 0


def test_retry_cancel_clears_prompt(connected_model: MainModel) -> None:
    _time_out(connected_model)
    assert press(connected_model, "escape") is None
    prompt = connected_model.retry_prompt
    assert not prompt.is_active()
    assert prompt.timed_out_query() == ""
    assert connected_model.status_message == "Retry cancelled."


def test_saved_timeout_triggers_one_automatic_retry(
    connected_model: MainModel, config_store
) -> None:
    config_store.set_preferred_timeout_seconds(60)
    first = _open_editor_and_run(connected_model)

    retry = connected_model.update(OperationTimedOut(first.operation_id, 30))
    assert isinstance(retry, StartOperation)
    assert retry.timeout_seconds == 60
    assert not connected_model.retry_prompt.is_active()

    assert connected_model.update(OperationTimedOut(retry.operation_id, 60)) is None
    assert connected_model.retry_prompt.is_active()


def test_success_resets_automatic_retry(connected_model: MainModel, config_store) -> None:
    config_store.set_preferred_timeout_seconds(60)
    first = _open_editor_and_run(connected_model)
    retry = connected_model.update(OperationTimedOut(first.operation_id, 30))
    assert connected_model.retry_prompt.auto_retried()
    settle(connected_model, retry)
    assert not connected_model.retry_prompt.auto_retried()


def test_cancelled_query_completion_is_dropped(connected_model: MainModel) -> None:
    effect = _open_editor_and_run(connected_model)
    cancel = press(connected_model, "escape")
    assert cancel == CancelOperation(effect.operation_id)

    late = OperationSucceeded(effect.operation_id, QueryResult(["one"], [(1,)]))
    assert connected_model.update(late) is None
    assert connected_model.update(OperationTimedOut(effect.operation_id, 30)) is None
    assert connected_model.mode == ViewMode.EDITOR
    assert connected_model.view(ViewMode.RESULTS).result is None
    assert not connected_model.retry_prompt.is_active()


def test_disconnect_returns_to_connection_view(
    connected_model: MainModel, fake_connections
) -> None:
    press(connected_model, "escape")
    assert connected_model.mode == ViewMode.CONNECTION
    assert not fake_connections.is_connected()
    assert connected_model.view_history == []


def test_status_expiry_ignores_stale_sequence(connected_model: MainModel) -> None:
    assert connected_model.status_message == "Connected to local."
    sequence = connected_model.status_sequence
    connected_model.update(StatusExpired(sequence - 1))
    assert connected_model.status_message == "Connected to local."
    connected_model.update(StatusExpired(sequence))
    assert connected_model.status_message == ""


def test_history_view_refreshes_on_enter(connected_model: MainModel) -> None:
    settle(connected_model, _open_editor_and_run(connected_model))
    press(connected_model, "tab")
    assert connected_model.mode == ViewMode.HISTORY
    assert len(connected_model.view(ViewMode.HISTORY).entries) == 1


def test_render_shows_indicator_and_status_bar(connected_model: MainModel) -> None:
    frame = connected_model.render()
    assert "[reverse] Browser [/]" in frame
    assert "db: appdb" in frame
    assert "schema: public" in frame


def test_second_help_key_closes_help(connected_model: MainModel) -> None:
    press(connected_model, "?")
    assert connected_model.showing_help
    press(connected_model, "?")
    assert not connected_model.showing_help


MODE_ROUTES = {
    ViewMode.CONNECTION: ["escape"],
    ViewMode.BROWSER: [],
    ViewMode.EDITOR: ["e"],
    ViewMode.RESULTS: ["enter"],
    ViewMode.HISTORY: ["h"],
    ViewMode.EXPORT: ["enter", "x"],
    ViewMode.WHERE: ["enter", "w"],
    ViewMode.COLUMNS: ["enter", "c"],
    ViewMode.CHAT: ["c"],
    ViewMode.SCHEMA: ["s"],
}


def _enter(model: MainModel, mode: ViewMode) -> None:
    for name in MODE_ROUTES[mode]:
        settle(model, press(model, name))
    assert model.mode == mode


def test_every_mode_has_a_route() -> None:
    assert set(MODE_ROUTES) == set(ViewMode)


@pytest.mark.parametrize("mode", list(ViewMode))
def test_resize_applies_in_every_mode(connected_model: MainModel, mode: ViewMode) -> None:
    _enter(connected_model, mode)
    assert connected_model.update(Resized(101, 33)) is None
    assert connected_model.mode == mode
    assert (connected_model.width, connected_model.height) == (101, 33)
    for view_mode in ViewMode:
        view = connected_model.view(view_mode)
        assert (view.width, view.height) == (101, 33)


@pytest.mark.parametrize("mode", list(ViewMode))
def test_help_key_in_every_mode(connected_model: MainModel, mode: ViewMode) -> None:
    _enter(connected_model, mode)
    press(connected_model, "?")
    assert connected_model.showing_help is (mode != ViewMode.EDITOR)
    assert connected_model.mode == mode


def test_help_key_types_into_where_value(connected_model: MainModel) -> None:
    _enter(connected_model, ViewMode.WHERE)
    where = connected_model.view(ViewMode.WHERE)
    press(connected_model, "a", "down", "down")
    assert where.adding_new
    assert where.focus_index == 2
    press(connected_model, "?")
    assert not connected_model.showing_help
    assert where.value_input.value == "?"


def test_where_form_blocks_help_until_closed(connected_model: MainModel) -> None:
    _enter(connected_model, ViewMode.WHERE)
    press(connected_model, "a", "?")
    assert not connected_model.showing_help
    press(connected_model, "escape", "?")
    assert connected_model.showing_help


def test_timeout_while_help_is_open_shows_prompt(
    connected_model: MainModel, config_store
) -> None:
    effect = _open_editor_and_run(connected_model)
    press(connected_model, "tab", "?")
    assert connected_model.mode == ViewMode.RESULTS
    assert connected_model.showing_help

    connected_model.update(OperationTimedOut(effect.operation_id, 30))
    assert not connected_model.showing_help
    assert "Operation timed out." in connected_model.render()

    assert press(connected_model, "x") is None
    assert connected_model.retry_prompt.is_active()
    assert config_store.preferred_timeout_seconds() == 0


def test_manual_retry_can_be_cancelled_from_editor(connected_model: MainModel) -> None:
    _time_out(connected_model)
    editor = connected_model.view(ViewMode.EDITOR)
    assert not editor.running

    retry = press(connected_model, "1")
    assert isinstance(retry, StartOperation)
    assert editor.running
    assert "Executing query" in connected_model.render()
    assert press(connected_model, "ctrl+r") is None

    assert press(connected_model, "escape") == CancelOperation(retry.operation_id)
    assert connected_model.mode == ViewMode.EDITOR
    assert not connected_model.operations.is_pending(retry.operation_id)


def test_retried_table_load_shows_loading(connected_model: MainModel) -> None:
    browser = connected_model.view(ViewMode.BROWSER)
    load = press(connected_model, "r")
    assert isinstance(load, StartOperation)
    connected_model.update(OperationTimedOut(load.operation_id, 30))
    assert not browser.loading
    assert browser.error == "Loading timed out."

    retry = press(connected_model, "4")
    assert isinstance(retry, StartOperation)
    assert browser.loading
    assert browser.error == ""


def test_second_timeout_while_prompt_is_active(connected_model: MainModel) -> None:
    table_query = press(connected_model, "enter")
    assert isinstance(table_query, StartOperation)
    assert connected_model.mode == ViewMode.BROWSER
    editor_query = _open_editor_and_run(connected_model)

    connected_model.update(OperationTimedOut(editor_query.operation_id, 30))
    prompt = connected_model.retry_prompt
    query_text = prompt.timed_out_query()
    assert query_text == connected_model.view(ViewMode.EDITOR).text.strip()

    assert connected_model.update(OperationTimedOut(table_query.operation_id, 30)) is None
    assert prompt.is_active()
    assert prompt.timed_out_query() == query_text
    assert connected_model.view(ViewMode.BROWSER).error == "Loading timed out."
    assert connected_model.status_message == "Running query timed out."
    assert not connected_model.operations.is_pending(table_query.operation_id)

    retry = press(connected_model, "1")
    assert isinstance(retry, StartOperation)
    assert connected_model.view(ViewMode.EDITOR).running
