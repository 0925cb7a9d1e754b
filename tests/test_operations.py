from dbnav.modes import ViewMode
from dbnav.operations import OperationKind, OperationTracker


async def _job() -> None:
    return None


def test_ids_are_unique_and_resolved_once() -> None:
    tracker = OperationTracker()
    first = tracker.start(OperationKind.QUERY, ViewMode.EDITOR, "Running query", _job)
    second = tracker.start(OperationKind.METADATA, ViewMode.BROWSER, "Loading tables", _job)
    assert first.operation_id != second.operation_id
    assert tracker.resolve(first.operation_id) is first
    assert tracker.resolve(first.operation_id) is None
    assert tracker.is_busy()


def test_cancel_is_idempotent() -> None:
    tracker = OperationTracker()
    operation = tracker.start(OperationKind.QUERY, ViewMode.EDITOR, "Running query", _job)
    assert tracker.cancel(operation.operation_id)
    assert not tracker.cancel(operation.operation_id)
    assert tracker.resolve(operation.operation_id) is None
    assert not tracker.is_busy()


def test_restart_issues_new_id_with_same_details() -> None:
    tracker = OperationTracker()
    operation = tracker.start(
        OperationKind.QUERY,
        ViewMode.EDITOR,
        "Running query",
        _job,
        query="SELECT 1",
    )
    tracker.resolve(operation.operation_id)
    restarted = tracker.restart(operation)
    assert restarted.operation_id != operation.operation_id
    assert restarted.query == "SELECT 1"
    assert tracker.is_pending(restarted.operation_id)


def test_latest_matches_origin_and_kind() -> None:
    tracker = OperationTracker()
    tracker.start(OperationKind.QUERY, ViewMode.EDITOR, "a", _job)
    newest = tracker.start(OperationKind.QUERY, ViewMode.EDITOR, "b", _job)
    tracker.start(OperationKind.METADATA, ViewMode.EDITOR, "c", _job)
    assert tracker.latest(ViewMode.EDITOR, OperationKind.QUERY) is newest
    assert tracker.latest(ViewMode.RESULTS, OperationKind.QUERY) is None
