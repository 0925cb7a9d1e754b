from typing import Protocol

from dbnav.keymap import format_bindings
from dbnav.modes import ViewMode

_ALWAYS_SAFE = frozenset(
    {ViewMode.RESULTS, ViewMode.HISTORY, ViewMode.COLUMNS, ViewMode.SCHEMA}
)
_NEVER_SAFE = frozenset({ViewMode.EDITOR})
_VIEW_DECIDES = frozenset(
    {
        ViewMode.BROWSER,
        ViewMode.CONNECTION,
        ViewMode.WHERE,
        ViewMode.CHAT,
        ViewMode.EXPORT,
    }
)


class HelpSafety(Protocol):
    @property
    def help_safe(self) -> bool: ...


def is_help_safe(mode: ViewMode, view: HelpSafety) -> bool:
    """Whether the help key may be taken from the active view.

    A view that is capturing free text must receive every character, so the
    help overlay is only offered when nothing is being typed.
    """
    if mode in _ALWAYS_SAFE:
        return True
    if mode in _NEVER_SAFE:
        return False
    if mode in _VIEW_DECIDES:
        return view.help_safe
    raise ValueError(f"Unknown view mode: {mode!r}")


_GLOBAL_BINDINGS = [
    ("tab", "Next view"),
    ("esc", "Back"),
    ("ctrl+c", "Quit"),
]

HELP_SECTIONS: dict[ViewMode, tuple[str, list[tuple[str, str]]]] = {
    ViewMode.CONNECTION: (
        "Connection View",
        [
            ("j/k", "Move"),
            ("enter", "Connect"),
            ("n", "New connection"),
            ("d", "Delete connection"),
            ("esc", "Quit"),
        ],
    ),
    ViewMode.BROWSER: (
        "Browser View",
        [
            ("j/k", "Move"),
            ("enter", "View data"),
            ("/", "Filter"),
            ("S", "Next schema"),
            ("r", "Refresh"),
            ("e", "Editor"),
            ("h", "History"),
            ("c", "Chat"),
            ("s", "Schema"),
            ("esc", "Disconnect"),
        ],
    ),
    ViewMode.EDITOR: (
        "SQL Editor",
        [
            ("ctrl+r/f5", "Run query"),
            ("ctrl+l", "Clear"),
            ("esc", "Cancel query / Back"),
        ],
    ),
    ViewMode.RESULTS: (
        "Results View",
        [
            ("j/k", "Move"),
            ("n/p", "Page"),
            ("w", "Where"),
            ("c", "Columns"),
            ("x", "Export"),
        ],
    ),
    ViewMode.HISTORY: (
        "History View",
        [
            ("enter", "Edit"),
            ("r", "Re-run"),
            ("D", "Clear all"),
        ],
    ),
    ViewMode.EXPORT: (
        "Export View",
        [
            ("←/→", "Change format"),
            ("enter", "Export"),
        ],
    ),
    ViewMode.WHERE: (
        "WHERE Conditions",
        [
            ("a", "Add"),
            ("e", "Edit"),
            ("d", "Delete"),
            ("enter", "Apply"),
        ],
    ),
    ViewMode.COLUMNS: (
        "Column Selection",
        [
            ("space", "Toggle"),
            ("a", "All"),
            ("n", "None"),
            ("enter", "Apply"),
        ],
    ),
    ViewMode.CHAT: (
        "Chat View",
        [
            ("j/k", "Pick a question"),
            ("enter", "Ask"),
            ("C", "Clear transcript"),
        ],
    ),
    ViewMode.SCHEMA: (
        "Schema View",
        [
            ("enter/space", "Expand"),
            ("v", "View data"),
            ("r", "Refresh"),
        ],
    ),
}


def render_help(mode: ViewMode) -> str:
    title, bindings = HELP_SECTIONS[mode]
    lines = [
        "[bold]Keyboard Shortcuts[/]",
        "",
        f"[bold cyan]{title}[/]",
        "",
    ]
    lines.extend(format_bindings([binding]) for binding in bindings)
    lines.append("")
    lines.append(format_bindings(_GLOBAL_BINDINGS))
    lines.append("")
    lines.append("[dim]Press any key to close[/]")
    return "\n".join(lines)
