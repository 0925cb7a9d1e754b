from dataclasses import dataclass
from datetime import timedelta

from dbnav.keymap import format_bindings, is_cancel

# "No limit" is a very large finite deadline, never a stored default.
NO_LIMIT = timedelta(hours=24)


@dataclass(frozen=True)
class RetryChoice:
    timeout: timedelta
    save: bool

    def __post_init__(self) -> None:
        if self.save and self.timeout >= NO_LIMIT:
            raise ValueError("The unbounded timeout cannot be saved as a default.")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout.total_seconds()


RETRY_TIERS: dict[str, tuple[str, RetryChoice]] = {
    "1": ("60 seconds", RetryChoice(timeout=timedelta(seconds=60), save=True)),
    "2": ("2 minutes", RetryChoice(timeout=timedelta(minutes=2), save=True)),
    "3": ("5 minutes", RetryChoice(timeout=timedelta(minutes=5), save=True)),
    "4": ("No limit (this time only)", RetryChoice(timeout=NO_LIMIT, save=False)),
}


class RetryPrompt:
    """Modal negotiation of a new deadline after an operation timed out.

    The prompt consumes every key while active. A digit picks a tier and
    deactivates the prompt; the remembered query stays readable so the caller
    can re-issue it. Cancelling forgets the query.
    """

    def __init__(self) -> None:
        self._active = False
        self._timed_out_query = ""
        self._auto_retried = False

    def show(self, query: str) -> None:
        self._active = True
        self._timed_out_query = query

    def is_active(self) -> bool:
        return self._active

    def timed_out_query(self) -> str:
        return self._timed_out_query

    def auto_retried(self) -> bool:
        return self._auto_retried

    def set_auto_retried(self, auto_retried: bool) -> None:
        self._auto_retried = auto_retried

    def handle_key(self, key: str) -> tuple[RetryChoice | None, bool]:
        if not self._active:
            return None, False
        tier = RETRY_TIERS.get(key)
        if tier is not None:
            self._active = False
            return tier[1], True
        if is_cancel(key):
            self._active = False
            self._timed_out_query = ""
            return None, True
        return None, True

    def view(self) -> str:
        lines = [
            "[bold red]Operation timed out.[/]",
            "[bold]Retry with a longer timeout?[/]",
            "",
        ]
        bindings = [(key, label) for key, (label, _) in RETRY_TIERS.items()]
        bindings.append(("esc", "Cancel"))
        lines.append(format_bindings(bindings))
        return "\n".join(lines)
