from rich.markup import escape

INTERRUPT_KEY = "ctrl+c"
QUIT_KEY = "q"
HELP_CHARACTER = "?"
CYCLE_KEY = "tab"
REVERSE_CYCLE_KEY = "shift+tab"
CANCEL_KEYS = frozenset({"escape", "esc"})

UP_KEYS = frozenset({"up", "k"})
DOWN_KEYS = frozenset({"down", "j"})
LEFT_KEYS = frozenset({"left", "h"})
RIGHT_KEYS = frozenset({"right", "l"})
TOGGLE_KEYS = frozenset({"space", "x"})
RUN_KEYS = frozenset({"ctrl+r", "f5"})


def is_cancel(key: str) -> bool:
    return key in CANCEL_KEYS


def format_binding(key: str, label: str) -> str:
    return f"[bold cyan]{escape(key)}[/] {label}"


def format_bindings(bindings: list[tuple[str, str]]) -> str:
    return "  ".join([format_binding(key, label) for key, label in bindings])
