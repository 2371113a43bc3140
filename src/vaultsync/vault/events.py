"""Typed local change events."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ChangeEvent:
    """Base class for a change to one vault-relative path."""

    path: str


@dataclass(frozen=True)
class FileCreated(ChangeEvent):
    pass


@dataclass(frozen=True)
class FileModified(ChangeEvent):
    pass


@dataclass(frozen=True)
class FileDeleted(ChangeEvent):
    pass


@dataclass(frozen=True)
class FileRenamed(ChangeEvent):
    """``path`` is the new location; ``old_path`` is where the file used to be."""

    old_path: str = ""
