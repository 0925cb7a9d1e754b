from enum import IntEnum


class ViewMode(IntEnum):
    CONNECTION = 0
    BROWSER = 1
    EDITOR = 2
    RESULTS = 3
    HISTORY = 4
    EXPORT = 5
    WHERE = 6
    COLUMNS = 7
    CHAT = 8
    SCHEMA = 9

    @property
    def label(self) -> str:
        return self.name.capitalize()


CYCLE_ORDER: tuple[ViewMode, ...] = (
    ViewMode.BROWSER,
    ViewMode.EDITOR,
    ViewMode.RESULTS,
    ViewMode.HISTORY,
    ViewMode.CHAT,
)

INDICATOR_ORDER: tuple[ViewMode, ...] = (
    ViewMode.CONNECTION,
    ViewMode.BROWSER,
    ViewMode.EDITOR,
    ViewMode.RESULTS,
    ViewMode.HISTORY,
    ViewMode.CHAT,
    ViewMode.EXPORT,
    ViewMode.WHERE,
    ViewMode.COLUMNS,
    ViewMode.SCHEMA,
)


def next_in_cycle(mode: ViewMode) -> ViewMode:
    if mode not in CYCLE_ORDER:
        return CYCLE_ORDER[0]
    index = CYCLE_ORDER.index(mode)
    return CYCLE_ORDER[(index + 1) % len(CYCLE_ORDER)]
