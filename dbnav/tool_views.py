import csv
from dataclasses import replace
from datetime import datetime
import json
import logging
from pathlib import Path

from rich.markup import escape

from dbnav.events import (
    Command,
    Event,
    GoBack,
    KeyPressed,
    LoadColumns,
    OperationFailed,
    OperationRestarted,
    OperationSucceeded,
    OperationTimedOut,
    RunQuery,
)
from dbnav.keymap import (
    DOWN_KEYS,
    LEFT_KEYS,
    RIGHT_KEYS,
    TOGGLE_KEYS,
    UP_KEYS,
    format_bindings,
    is_cancel,
)
from dbnav.modes import ViewMode
from dbnav.postgres_driver import ColumnInfo, ColumnListing, QueryResult
from dbnav.query_builder import (
    OPERATORS,
    WhereCondition,
    build_table_query,
    build_where_clause,
    qualified_table,
    quote_literal,
)
from dbnav.text_input import LineInput
from dbnav.views import (
    BrowserView,
    ChildView,
    ResultsView,
    Transition,
    format_cell_value,
    format_cell_value_for_table,
    move_index,
    render_error_line,
    visible_window,
)

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("csv", "tsv", "json")


class ExportView(ChildView):
    mode = ViewMode.EXPORT

    def __init__(self, results: ResultsView, output_dir: Path) -> None:
        super().__init__()
        self._results = results
        self._output_dir = output_dir
        self.format_index = 0
        self.message = ""
        self.error = ""

    @property
    def export_format(self) -> str:
        return EXPORT_FORMATS[self.format_index]

    def on_enter(self) -> Command | None:
        self.message = ""
        self.error = ""
        return None

    def handle_key(self, event: KeyPressed) -> Transition:
        if event.key in LEFT_KEYS:
            self.format_index = (self.format_index - 1) % len(EXPORT_FORMATS)
        elif event.key in RIGHT_KEYS:
            self.format_index = (self.format_index + 1) % len(EXPORT_FORMATS)
        elif event.key == "enter":
            self._export()
        elif is_cancel(event.key):
            return self._stay(GoBack(ViewMode.RESULTS))
        return self._stay()

    def _export(self) -> None:
        result = self._results.result
        if result is None:
            self.error = "No results to export."
            return
        columns = [
            column for column in result.columns if column in self._results.visible_columns
        ]
        indexes = [result.columns.index(column) for column in columns]
        rows = [[row[index] for index in indexes] for row in result.rows]
        try:
            path = write_export(
                self._output_dir,
                self._export_name(),
                self.export_format,
                columns,
                rows,
            )
        except OSError as error:
            logger.exception("Export failed")
            self.error = f"Export failed: {error}"
            return
        self.error = ""
        self.message = f"Exported {len(rows)} rows to {path}"

    def _export_name(self) -> str:
        source = self._results.source
        base_name = source.table if source is not None else "query"
        return f"{base_name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    def render(self, width: int, height: int) -> str:
        result = self._results.result
        row_count = len(result.rows) if result is not None else 0
        formats = "  ".join(
            f"[reverse] {name} [/]" if index == self.format_index else f" {name} "
            for index, name in enumerate(EXPORT_FORMATS)
        )
        lines = [
            "[bold]Export Results[/]",
            "",
            f"Rows: {row_count}",
            f"Directory: {escape(str(self._output_dir))}",
            "",
            f"Format: {formats}",
            "",
        ]
        if self.message:
            lines.append(f"[green]{escape(self.message)}[/]")
        lines.append(render_error_line(self.error))
        lines.append(
            format_bindings([("←/→", "Format"), ("enter", "Export"), ("esc", "Back")])
        )
        return "\n".join(lines)


def write_export(
    output_dir: Path,
    base_name: str,
    export_format: str,
    columns: list[str],
    rows: list[list[object]],
) -> Path:
    if export_format not in EXPORT_FORMATS:
        raise ValueError(f"Unknown export format: {export_format}")
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{base_name}.{export_format}"
    if export_format == "json":
        payload = [dict(zip(columns, row)) for row in rows]
        path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    else:
        delimiter = "," if export_format == "csv" else "\t"
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle, delimiter=delimiter)
            writer.writerow(columns)
            writer.writerows([[format_cell_value(value) for value in row] for row in rows])
    logger.info("Exported %d rows to %s", len(rows), path)
    return path


class WhereView(ChildView):
    mode = ViewMode.WHERE

    def __init__(self, results: ResultsView) -> None:
        super().__init__()
        self._results = results
        self._table_key: tuple[str, str] | None = None
        self.conditions: list[WhereCondition] = []
        self.selected_index = 0
        self.adding_new = False
        self.editing_index: int | None = None
        self.column_index = 0
        self.operator_index = 0
        self.value_input = LineInput("value")
        self.focus_index = 0
        self.error = ""

    @property
    def help_safe(self) -> bool:
        return not self.adding_new

    @property
    def columns(self) -> list[str]:
        return self._results.columns

    def on_enter(self) -> Command | None:
        source = self._results.source
        table_key = (source.schema, source.table) if source is not None else None
        if table_key != self._table_key:
            self._table_key = table_key
            self.conditions = []
            self.selected_index = 0
        self.adding_new = False
        self.error = ""
        return None

    def handle_key(self, event: KeyPressed) -> Transition:
        if self.adding_new:
            return self._handle_form_key(event)
        if event.key in UP_KEYS:
            self.selected_index = move_index(self.selected_index, -1, len(self.conditions))
        elif event.key in DOWN_KEYS:
            self.selected_index = move_index(self.selected_index, 1, len(self.conditions))
        elif event.key == "a":
            self._open_form(None)
        elif event.key == "e":
            if self.conditions:
                self._open_form(self.selected_index)
        elif event.key == "d":
            if self.conditions:
                del self.conditions[self.selected_index]
                self.selected_index = move_index(
                    self.selected_index, 0, len(self.conditions)
                )
        elif event.key == "enter":
            return self._stay(self._apply())
        elif is_cancel(event.key):
            return self._stay(GoBack(ViewMode.RESULTS))
        return self._stay()

    def _open_form(self, editing_index: int | None) -> None:
        if not self.columns:
            self.error = "No columns to filter on."
            return
        self.adding_new = True
        self.editing_index = editing_index
        self.focus_index = 0
        self.error = ""
        if editing_index is None:
            self.column_index = 0
            self.operator_index = 0
            self.value_input.clear()
            return
        condition = self.conditions[editing_index]
        self.column_index = (
            self.columns.index(condition.column) if condition.column in self.columns else 0
        )
        self.operator_index = OPERATORS.index(condition.operator)
        self.value_input.value = condition.value

    def _handle_form_key(self, event: KeyPressed) -> Transition:
        if is_cancel(event.key):
            self.adding_new = False
            self.editing_index = None
            self.error = ""
        elif event.key == "up":
            self.focus_index = (self.focus_index - 1) % 3
        elif event.key == "down":
            self.focus_index = (self.focus_index + 1) % 3
        elif event.key in {"left", "right"} and self.focus_index < 2:
            delta = -1 if event.key == "left" else 1
            if self.focus_index == 0:
                self.column_index = (self.column_index + delta) % len(self.columns)
            else:
                self.operator_index = (self.operator_index + delta) % len(OPERATORS)
        elif event.key == "enter":
            self._save_condition()
        elif self.focus_index == 2:
            self.value_input.handle_key(event)
        return self._stay()

    def _save_condition(self) -> None:
        condition = WhereCondition(
            column=self.columns[self.column_index],
            operator=OPERATORS[self.operator_index],
            value=self.value_input.value.strip(),
        )
        try:
            build_where_clause([condition])
        except ValueError as error:
            self.error = str(error)
            return
        if condition.operator not in {"IS NULL", "IS NOT NULL"} and not condition.value:
            self.error = "A value is required for this operator."
            return
        if self.editing_index is None:
            self.conditions.append(condition)
            self.selected_index = len(self.conditions) - 1
        else:
            self.conditions[self.editing_index] = condition
        self.adding_new = False
        self.editing_index = None
        self.value_input.clear()
        self.error = ""

    def _apply(self) -> Command | None:
        source = self._results.source
        if source is None:
            self.error = "WHERE is only available for table data."
            return None
        filtered = replace(
            source, where_sql=build_where_clause(self.conditions), offset=0
        )
        self.error = ""
        return RunQuery(build_table_query(filtered), filtered)

    def handle_event(self, event: Event) -> Transition:
        if isinstance(event, OperationSucceeded):
            if isinstance(event.value, QueryResult):
                return ViewMode.RESULTS, None
        elif isinstance(event, OperationFailed):
            self.error = str(event.error)
        elif isinstance(event, OperationTimedOut):
            self.error = "Query timed out."
        return self._stay()

    def render(self, width: int, height: int) -> str:
        source = self._results.source
        table_text = escape(f"{source.schema}.{source.table}") if source else "<none>"
        lines = [f"[bold]WHERE Conditions[/] ({table_text})", ""]
        if not self.conditions:
            lines.append("[dim]No conditions. Press a to add one.[/]")
        for index, condition in enumerate(self.conditions):
            text = escape(
                f"{condition.column} {condition.operator} {condition.value}".rstrip()
            )
            if index == self.selected_index and not self.adding_new:
                lines.append(f"[reverse] {text} [/]")
            else:
                lines.append(f" {text}")
        if self.adding_new:
            lines.extend(["", self._render_form()])
        lines.append("")
        lines.append(render_error_line(self.error))
        if self.adding_new:
            bindings = [
                ("↑/↓", "Field"),
                ("←/→", "Change"),
                ("enter", "Save"),
                ("esc", "Cancel"),
            ]
        else:
            bindings = [
                ("a", "Add"),
                ("e", "Edit"),
                ("d", "Delete"),
                ("enter", "Apply"),
                ("esc", "Back"),
            ]
        lines.append(format_bindings(bindings))
        return "\n".join(lines)

    def _render_form(self) -> str:
        fields = [
            ("Column", escape(self.columns[self.column_index])),
            ("Operator", escape(OPERATORS[self.operator_index])),
            ("Value", self.value_input.render(self.focus_index == 2)),
        ]
        lines = []
        for index, (label, value) in enumerate(fields):
            marker = "▶" if index == self.focus_index else " "
            lines.append(f"{marker} {label}: {value}")
        return "\n".join(lines)


class ColumnsView(ChildView):
    mode = ViewMode.COLUMNS

    def __init__(self, results: ResultsView) -> None:
        super().__init__()
        self._results = results
        self.selected: dict[str, bool] = {}
        self.cursor = 0
        self.error = ""

    def on_enter(self) -> Command | None:
        visible = set(self._results.visible_columns)
        self.selected = {column: column in visible for column in self._results.columns}
        self.cursor = 0
        self.error = ""
        return None

    def handle_key(self, event: KeyPressed) -> Transition:
        columns = list(self.selected)
        if event.key in UP_KEYS:
            self.cursor = move_index(self.cursor, -1, len(columns))
        elif event.key in DOWN_KEYS:
            self.cursor = move_index(self.cursor, 1, len(columns))
        elif event.key in TOGGLE_KEYS or event.character == " ":
            if columns:
                column = columns[self.cursor]
                self.selected[column] = not self.selected[column]
        elif event.key == "a":
            self.selected = dict.fromkeys(self.selected, True)
        elif event.key == "n":
            self.selected = dict.fromkeys(self.selected, False)
        elif event.key == "enter":
            chosen = [column for column, on in self.selected.items() if on]
            if not chosen:
                self.error = "Select at least one column."
                return self._stay()
            self._results.set_visible_columns(chosen)
            return self._stay(GoBack(ViewMode.RESULTS))
        elif is_cancel(event.key):
            return self._stay(GoBack(ViewMode.RESULTS))
        return self._stay()

    def render(self, width: int, height: int) -> str:
        lines = ["[bold]Select Columns[/]", ""]
        columns = list(self.selected)
        for index in visible_window(len(columns), self.cursor, height - 8):
            column = columns[index]
            box = "[x]" if self.selected[column] else "[ ]"
            text = escape(f"{box} {column}")
            if index == self.cursor:
                lines.append(f"[reverse]{text}[/]")
            else:
                lines.append(text)
        lines.append("")
        lines.append(render_error_line(self.error))
        lines.append(
            format_bindings(
                [
                    ("space", "Toggle"),
                    ("a", "All"),
                    ("n", "None"),
                    ("enter", "Apply"),
                    ("esc", "Back"),
                ]
            )
        )
        return "\n".join(lines)


class ChatView(ChildView):
    """Answers a fixed set of questions about the selected table with SQL."""

    mode = ViewMode.CHAT

    def __init__(self, browser: BrowserView) -> None:
        super().__init__()
        self._browser = browser
        self.transcript: list[tuple[str, str]] = []
        self.selected_index = 0
        self.waiting = False

    def questions(self) -> list[tuple[str, str]]:
        schema = self._browser.schema
        table = self._browser.selected_table
        items = [
            ("How many tables are in this schema?", _count_tables_sql(schema)),
            ("Which tables are the largest?", _largest_tables_sql(schema)),
        ]
        if table is not None:
            table_sql = qualified_table(schema, table.name)
            items.extend(
                [
                    (f"How many rows are in {table.name}?", f"SELECT count(*) FROM {table_sql}"),
                    (
                        f"Which columns does {table.name} have?",
                        _table_columns_sql(schema, table.name),
                    ),
                    (
                        f"Show a few rows from {table.name}",
                        f"SELECT * FROM {table_sql} LIMIT 5",
                    ),
                ]
            )
        return items

    def handle_key(self, event: KeyPressed) -> Transition:
        questions = self.questions()
        if event.key in UP_KEYS:
            self.selected_index = move_index(self.selected_index, -1, len(questions))
        elif event.key in DOWN_KEYS:
            self.selected_index = move_index(self.selected_index, 1, len(questions))
        elif event.key == "enter":
            if self.waiting or not self._browser.schema:
                return self._stay()
            question, query = questions[move_index(self.selected_index, 0, len(questions))]
            self.transcript.append(("you", question))
            self.waiting = True
            return self._stay(RunQuery(query))
        elif event.key == "C":
            self.transcript = []
        elif is_cancel(event.key):
            return self._stay(GoBack(ViewMode.BROWSER))
        return self._stay()

    def handle_event(self, event: Event) -> Transition:
        if isinstance(event, OperationSucceeded) and isinstance(event.value, QueryResult):
            self.transcript.append(("dbnav", summarize_result(event.value)))
        elif isinstance(event, OperationFailed):
            self.transcript.append(("dbnav", f"That query failed: {event.error}"))
        elif isinstance(event, OperationTimedOut):
            self.transcript.append(("dbnav", "That query timed out."))
        elif isinstance(event, OperationRestarted):
            self.transcript.append(("dbnav", "Retrying that query..."))
            self.waiting = True
            return self._stay()
        else:
            return self._stay()
        self.waiting = False
        return self._stay()

    def render(self, width: int, height: int) -> str:
        lines = ["[bold]Chat[/]", ""]
        for speaker, text in self.transcript[-max(1, height - 14) :]:
            color = "cyan" if speaker == "you" else "green"
            lines.append(f"[bold {color}]{speaker}:[/] {escape(text)}")
        if self.waiting:
            lines.append("[yellow]Thinking...[/]")
        lines.append("")
        if not self._browser.schema:
            lines.append("[dim]Load a schema in the browser first.[/]")
        for index, (question, _) in enumerate(self.questions()):
            if index == self.selected_index:
                lines.append(f"[reverse] ▶ {escape(question)} [/]")
            else:
                lines.append(f"   {escape(question)}")
        lines.append("")
        lines.append(
            format_bindings(
                [("j/k", "Question"), ("enter", "Ask"), ("C", "Clear"), ("esc", "Back")]
            )
        )
        return "\n".join(lines)


def _count_tables_sql(schema: str) -> str:
    return (
        "SELECT count(*) FROM information_schema.tables "
        f"WHERE table_schema = {quote_literal(schema)}"
    )


def _table_columns_sql(schema: str, table: str) -> str:
    return (
        "SELECT column_name, data_type FROM information_schema.columns "
        f"WHERE table_schema = {quote_literal(schema)} "
        f"AND table_name = {quote_literal(table)} ORDER BY ordinal_position"
    )


def _largest_tables_sql(schema: str) -> str:
    schema_literal = quote_literal(schema)
    return (
        "SELECT c.relname AS table_name, c.reltuples::bigint AS estimated_rows "
        "FROM pg_class c JOIN pg_namespace n ON n.oid = c.relnamespace "
        f"WHERE n.nspname = {schema_literal} AND c.relkind IN ('r', 'p') "
        "ORDER BY c.reltuples DESC LIMIT 5"
    )


def summarize_result(result: QueryResult, max_rows: int = 5) -> str:
    if len(result.columns) == 1 and len(result.rows) == 1:
        return f"The answer is {format_cell_value(result.rows[0][0])}."
    if not result.rows:
        return "No rows matched."
    lines = [f"{len(result.rows)} rows:"]
    for row in result.rows[:max_rows]:
        lines.append(
            ", ".join(
                f"{column}={format_cell_value_for_table(value)}"
                for column, value in zip(result.columns, row)
            )
        )
    if len(result.rows) > max_rows:
        lines.append("...")
    return "\n".join(lines)


class SchemaView(ChildView):
    mode = ViewMode.SCHEMA

    def __init__(self, browser: BrowserView) -> None:
        super().__init__()
        self._browser = browser
        self.loaded_schema = ""
        self.columns_by_table: dict[str, list[ColumnInfo]] = {}
        self.expanded: set[str] = set()
        self.cursor = 0
        self.loading = False
        self.error = ""

    @property
    def tables(self) -> list[str]:
        return list(self.columns_by_table)

    def on_enter(self) -> Command | None:
        schema = self._browser.schema
        if not schema or schema == self.loaded_schema:
            return None
        return self._load(schema)

    def _load(self, schema: str) -> Command:
        self.loading = True
        self.error = ""
        return LoadColumns(schema)

    def handle_key(self, event: KeyPressed) -> Transition:
        tables = self.tables
        if event.key in UP_KEYS:
            self.cursor = move_index(self.cursor, -1, len(tables))
        elif event.key in DOWN_KEYS:
            self.cursor = move_index(self.cursor, 1, len(tables))
        elif event.key in {"enter", "space"} or event.character == " ":
            if tables:
                self.expanded ^= {tables[self.cursor]}
        elif event.key == "v":
            if tables:
                source = self._browser.table_source(tables[self.cursor])
                return self._stay(RunQuery(build_table_query(source), source))
        elif event.key == "r":
            if self._browser.schema:
                return self._stay(self._load(self._browser.schema))
        elif is_cancel(event.key):
            return self._stay(GoBack(ViewMode.BROWSER))
        return self._stay()

    def handle_event(self, event: Event) -> Transition:
        if isinstance(event, OperationSucceeded):
            if isinstance(event.value, ColumnListing):
                self._apply_listing(event.value)
            elif isinstance(event.value, QueryResult):
                return ViewMode.RESULTS, None
        elif isinstance(event, OperationFailed):
            self.loading = False
            self.error = str(event.error)
        elif isinstance(event, OperationTimedOut):
            self.loading = False
            self.error = "Loading columns timed out."
        elif isinstance(event, OperationRestarted):
            self.loading = not event.query
            self.error = ""
        return self._stay()

    def _apply_listing(self, listing: ColumnListing) -> None:
        grouped: dict[str, list[ColumnInfo]] = {}
        for column in listing.columns:
            grouped.setdefault(column.table_name, []).append(column)
        self.columns_by_table = grouped
        self.loaded_schema = listing.schema
        self.expanded = set()
        self.cursor = 0
        self.loading = False
        self.error = ""

    def render(self, width: int, height: int) -> str:
        lines = [f"[bold]Schema[/] ({escape(self.loaded_schema or '<none>')})", ""]
        if self.loading:
            lines.append("[yellow]Loading columns...[/]")
        elif not self.columns_by_table:
            lines.append("[dim]No tables.[/]")
        for index, table in enumerate(self.tables):
            arrow = "▼" if table in self.expanded else "▶"
            text = f"{arrow} {escape(table)}"
            lines.append(f"[reverse]{text}[/]" if index == self.cursor else text)
            if table in self.expanded:
                for column in self.columns_by_table[table]:
                    nullable = "" if column.nullable else " not null"
                    lines.append(
                        f"    {escape(column.name)} [dim]{escape(column.data_type)}{nullable}[/]"
                    )
        lines.append("")
        lines.append(render_error_line(self.error))
        lines.append(
            format_bindings(
                [
                    ("enter", "Expand"),
                    ("v", "View data"),
                    ("r", "Refresh"),
                    ("esc", "Back"),
                ]
            )
        )
        return "\n".join(lines)
