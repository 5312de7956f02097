"""
Per-session file selection.

Holds the files chosen for one form submission and enforces the upload
limits before anything is sent. Each form session owns its own
FileSelection; observers subscribe to be told about changes.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

from formrelay.relay.validation import UploadLimits, file_extension, format_file_name

SelectionListener = Callable[[tuple["SelectedFile", ...]], None]


class SelectionError(ValueError):
    """Raised when files cannot be added to the selection."""


@dataclass(frozen=True)
class SelectedFile:
    """A file chosen for upload."""

    path: Path
    size: int
    formatted_name: str
    content_type: str

    @property
    def original_name(self) -> str:
        return self.path.name

    @classmethod
    def from_path(cls, path: str | Path) -> "SelectedFile":
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            path=path,
            size=path.stat().st_size,
            formatted_name=format_file_name(path.name),
            content_type=content_type or "application/octet-stream",
        )


class FileSelection:
    """
    Files selected for one submission.

    A batch passed to add() is accepted or rejected as a whole, so a bad
    file never leaves the selection half-updated.
    """

    def __init__(self, limits: UploadLimits | None = None):
        self.limits = limits or UploadLimits()
        self._files: list[SelectedFile] = []
        self._listeners: list[SelectionListener] = []

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[SelectedFile]:
        return iter(tuple(self._files))

    @property
    def entries(self) -> tuple[SelectedFile, ...]:
        return tuple(self._files)

    def subscribe(self, listener: SelectionListener) -> Callable[[], None]:
        """
        Register a listener called with the current entries after every change.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def add(self, *paths: str | Path) -> list[SelectedFile]:
        """
        Add files to the selection.

        Raises:
            SelectionError: If the batch breaks the count, type or size limits
            FileNotFoundError: If a path does not exist
        """
        if len(self._files) + len(paths) > self.limits.max_files:
            raise SelectionError(f"Maximum {self.limits.max_files} files allowed")

        invalid = [p for p in paths if file_extension(Path(p).name) not in self.limits.allowed_extensions]
        if invalid:
            raise SelectionError(
                f"Invalid file type(s). Allowed types: {', '.join(self.limits.allowed_extensions)}"
            )

        batch = [SelectedFile.from_path(p) for p in paths]
        if any(f.size > self.limits.max_file_size for f in batch):
            raise SelectionError(
                f"File(s) too large. Maximum size allowed is "
                f"{self.limits.max_file_size_mb:g}MB per file"
            )

        self._files.extend(batch)
        self._notify()
        return batch

    def remove(self, index: int) -> SelectedFile:
        removed = self._files.pop(index)
        self._notify()
        return removed

    def clear(self) -> None:
        self._files.clear()
        self._notify()

    def _notify(self) -> None:
        snapshot = self.entries
        for listener in list(self._listeners):
            listener(snapshot)
