"""Data model shared by the sync components."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..vault.filesystem import LocalFileRecord


SIDECAR_SUFFIX = ".meta.json"


class OutcomeKind(str, Enum):
    """What happened to one alias during a pass."""
    UPLOADED = "uploaded"
    UPDATED = "updated"
    DOWNLOADED = "downloaded"
    DIVERGED = "diverged"
    DELETED = "deleted"
    MOVED = "moved"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RemoteVersion:
    """One stored version of an alias."""

    alias: str
    sequence_tag: int
    payload_key: str
    extension: Optional[str] = None

    @property
    def sidecar_key(self) -> str:
        return self.payload_key + SIDECAR_SUFFIX


class SidecarMetadata(BaseModel):
    """Provenance stored next to every payload as ``<payload_key>.meta.json``."""

    original_name: str = Field(alias="originalName")
    original_path: str = Field(alias="originalPath")
    time_stamp: int = Field(alias="timeStamp")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def for_path(cls, path: str, sequence_tag: int) -> "SidecarMetadata":
        return cls(
            original_name=path.rsplit("/", 1)[-1],
            original_path=path,
            time_stamp=sequence_tag
        )

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> "SidecarMetadata":
        return cls.model_validate_json(data)


@dataclass(frozen=True)
class Inventory:
    """Immutable snapshot of both sides, built fresh for every pass.

    ``remote`` maps each alias to its head: the highest tag that has a sidecar.
    ``orphans`` holds the payload keys whose sidecar was absent from the
    listing; an alias whose versions are all orphans has a chain but no head.
    """

    local: Mapping[str, LocalFileRecord]
    remote: Mapping[str, RemoteVersion]
    chains: Mapping[str, Tuple[RemoteVersion, ...]]
    orphans: frozenset = frozenset()
    collisions: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    empty: Tuple[str, ...] = ()

    @classmethod
    def build(
        cls,
        local: Dict[str, LocalFileRecord],
        chains: Dict[str, List[RemoteVersion]],
        orphans=(),
        collisions: Optional[Dict[str, List[str]]] = None,
        empty=()
    ) -> "Inventory":
        orphans = frozenset(orphans)
        heads: Dict[str, RemoteVersion] = {}
        for alias, versions in chains.items():
            paired = [v for v in versions if v.payload_key not in orphans]
            if paired:
                heads[alias] = paired[0]

        return cls(
            local=MappingProxyType(dict(local)),
            remote=MappingProxyType(heads),
            chains=MappingProxyType({alias: tuple(versions) for alias, versions in chains.items()}),
            orphans=orphans,
            collisions=MappingProxyType({k: tuple(v) for k, v in (collisions or {}).items()}),
            empty=tuple(empty)
        )

    def unpaired(self, alias: str) -> Optional[RemoteVersion]:
        """Newest version of ``alias`` when every version lacks a sidecar."""
        chain = self.chains.get(alias, ())
        if chain and alias not in self.remote:
            return chain[0]
        return None


@dataclass
class SyncOutcome:
    """Result for one alias."""

    alias: str
    kind: OutcomeKind
    path: Optional[str] = None
    reason: Optional[str] = None
    error: bool = False
    retryable: bool = False
    sequence_tag: Optional[int] = None

    @classmethod
    def skipped(
        cls,
        alias: str,
        reason: str,
        path: Optional[str] = None,
        error: bool = False,
        retryable: bool = False
    ) -> "SyncOutcome":
        return cls(alias=alias, kind=OutcomeKind.SKIPPED, path=path, reason=reason, error=error, retryable=retryable)

    def to_dict(self) -> Dict[str, object]:
        return {
            "alias": self.alias,
            "kind": self.kind.value,
            "path": self.path,
            "reason": self.reason,
            "error": self.error,
            "sequence_tag": self.sequence_tag
        }


@dataclass
class PassReport:
    """Outcomes of one reconciliation pass."""

    trigger: str = "manual"
    outcomes: List[SyncOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    cancelled: bool = False

    def add(self, outcome: SyncOutcome) -> None:
        self.outcomes.append(outcome)

    def extend(self, outcomes) -> None:
        self.outcomes.extend(outcomes)

    def finish(self) -> "PassReport":
        self.finished_at = datetime.now(timezone.utc)
        return self

    def counts(self) -> Dict[str, int]:
        counter = Counter(outcome.kind.value for outcome in self.outcomes)
        return {kind.value: counter.get(kind.value, 0) for kind in OutcomeKind}

    @property
    def uploads(self) -> List[SyncOutcome]:
        return [o for o in self.outcomes if o.kind in (OutcomeKind.UPLOADED, OutcomeKind.UPDATED)]

    @property
    def failures(self) -> List[SyncOutcome]:
        return [o for o in self.outcomes if o.error]

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def outcome_for(self, alias: str) -> Optional[SyncOutcome]:
        for outcome in self.outcomes:
            if outcome.alias == alias:
                return outcome
        return None

    def summary(self) -> str:
        """One-line count summary for the user."""
        counts = self.counts()
        parts = [
            f"{len(self.uploads)} uploaded",
            f"{counts['downloaded']} downloaded",
            f"{counts['diverged']} diverged",
        ]
        for kind in ("deleted", "moved", "unchanged", "skipped"):
            if counts[kind]:
                parts.append(f"{counts[kind]} {kind}")
        if self.failures:
            parts.append(f"{len(self.failures)} errors")
        text = ", ".join(parts)
        if self.cancelled:
            text += " (cancelled)"
        return text

    def to_dict(self) -> Dict[str, object]:
        return {
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "cancelled": self.cancelled,
            "counts": self.counts(),
            "summary": self.summary(),
            "failures": [o.to_dict() for o in self.failures]
        }
