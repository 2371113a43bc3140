"""Build the per-pass snapshots of the local tree and the remote bucket."""

from typing import Dict, Iterable, List, Set, Tuple

from . import alias as alias_codec
from .models import Inventory, RemoteVersion
from .sidecar import has_sidecar
from ..storage.base import ObjectInfo
from ..vault.filesystem import LocalFileRecord


def group_versions(listing: Iterable[ObjectInfo]) -> Tuple[Dict[str, List[RemoteVersion]], Set[str]]:
    """Group payload keys into version chains.

    Chains are sorted newest first; versions with equal tags keep their
    listing order. Returns the chains and the payload keys without a
    sidecar in the same listing.
    """
    keys = [entry.key for entry in listing]
    present = set(keys)

    chains: Dict[str, List[RemoteVersion]] = {}
    orphans: Set[str] = set()

    for key in keys:
        version = alias_codec.parse_payload_key(key)
        if version is None:
            continue
        chains.setdefault(version.alias, []).append(version)
        if not has_sidecar(key, present):
            orphans.add(key)

    for versions in chains.values():
        versions.sort(key=lambda v: v.sequence_tag, reverse=True)

    return chains, orphans


def index_local(records: Iterable[LocalFileRecord]):
    """Map local files by alias.

    Paths are visited in sorted order and the first path to claim an alias
    keeps it. Returns ``(local, collisions, empty)`` where ``collisions`` maps
    an alias to the paths that lost it and ``empty`` lists paths with no
    usable alias.
    """
    local: Dict[str, LocalFileRecord] = {}
    collisions: Dict[str, List[str]] = {}
    empty: List[str] = []

    for record in sorted(records, key=lambda r: r.path):
        alias = alias_codec.encode(record.path)
        if not alias:
            empty.append(record.path)
        elif alias in local:
            collisions.setdefault(alias, []).append(record.path)
        else:
            local[alias] = record

    return local, collisions, empty


def build_inventory(records: Iterable[LocalFileRecord], listing: Iterable[ObjectInfo]) -> Inventory:
    local, collisions, empty = index_local(records)
    chains, orphans = group_versions(listing)
    return Inventory.build(local, chains, orphans=orphans, collisions=collisions, empty=empty)
