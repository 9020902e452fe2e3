from __future__ import annotations

from typing import Generic, TypeVar

T = TypeVar("T")


class History(Generic[T]):
    """
    Linear undo/redo over full snapshots.

    `push` truncates anything after the current index, so a new edit after an
    undo discards the redo branch. The pointer never leaves the bounds of the
    stored snapshots (it is -1 only while the history is empty).
    """

    def __init__(self) -> None:
        self._snapshots: list[T] = []
        self._index = -1

    def __len__(self) -> int:
        return len(self._snapshots)

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> T | None:
        if self._index < 0:
            return None
        return self._snapshots[self._index]

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._snapshots) - 1

    def reset(self, snapshot: T) -> None:
        self._snapshots = [snapshot]
        self._index = 0

    def push(self, snapshot: T) -> None:
        self._snapshots = self._snapshots[: self._index + 1]
        self._snapshots.append(snapshot)
        self._index = len(self._snapshots) - 1

    def undo(self) -> T | None:
        if not self.can_undo:
            return None
        self._index -= 1
        return self._snapshots[self._index]

    def redo(self) -> T | None:
        if not self.can_redo:
            return None
        self._index += 1
        return self._snapshots[self._index]
