from rich.markup import escape

from dbnav.events import KeyPressed


class LineInput:
    """Single-line text capture with the cursor pinned to the end."""

    def __init__(self, placeholder: str = "", value: str = "") -> None:
        self.placeholder = placeholder
        self.value = value

    def handle_key(self, event: KeyPressed) -> bool:
        if event.key == "backspace":
            self.value = self.value[:-1]
            return True
        if event.key == "ctrl+u":
            self.value = ""
            return True
        character = event.printable
        if character is None:
            return False
        self.value += character
        return True

    def clear(self) -> None:
        self.value = ""

    def render(self, focused: bool) -> str:
        if not self.value and not focused:
            return f"[dim]{escape(self.placeholder)}[/]"
        cursor = "[reverse] [/]" if focused else ""
        return f"{escape(self.value)}{cursor}"
