"""Path to storage-safe alias encoding and key naming.

Keys in the bucket look like ``<alias>__<tag>.<ext>`` with a companion
``<alias>__<tag>.<ext>.meta.json``. The alias alphabet has no ``_``, so the
first ``__`` in a key always ends the alias.
"""

import re
import unicodedata
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import quote

from .models import SIDECAR_SUFFIX, RemoteVersion


_UNSAFE = re.compile(r"[^a-zA-Z0-9.\-/]")
_SLASHES = re.compile(r"/{2,}")
_PAYLOAD_KEY = re.compile(r"^(?P<alias>.+?)__(?P<tag>\d+)(?:\.(?P<ext>.+))?$")

TAG_SEPARATOR = "__"


def encode(path: str) -> str:
    """Encode a vault path as an alias.

    Accents are folded to their base letters, everything outside
    ``[a-z0-9.-/]`` is dropped, the result is lower-cased and the separator
    is percent-encoded. Returns ``""`` when nothing survives.
    """
    decomposed = unicodedata.normalize("NFKD", path.replace("\\", "/"))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _SLASHES.sub("/", _UNSAFE.sub("", stripped)).strip("/")
    return quote(cleaned.lower(), safe="")


def extension_of(path: str) -> Optional[str]:
    """Sanitized extension of the file name, without the dot, or None."""
    suffix = PurePosixPath(path.replace("\\", "/")).suffix
    if not suffix:
        return None
    return encode(suffix[1:]) or None


def payload_key(alias: str, sequence_tag: int, extension: Optional[str] = None) -> str:
    key = f"{alias}{TAG_SEPARATOR}{int(sequence_tag)}"
    if extension:
        key += f".{extension}"
    return key


def sidecar_key(payload: str) -> str:
    return payload + SIDECAR_SUFFIX


def is_sidecar_key(key: str) -> bool:
    return key.endswith(SIDECAR_SUFFIX)


def parse_payload_key(key: str) -> Optional[RemoteVersion]:
    """Parse a payload key; None for sidecars and foreign objects."""
    if is_sidecar_key(key):
        return None
    match = _PAYLOAD_KEY.match(key)
    if match is None:
        return None
    return RemoteVersion(
        alias=match.group("alias"),
        sequence_tag=int(match.group("tag")),
        payload_key=key,
        extension=match.group("ext")
    )


def version_for(path: str, sequence_tag: int) -> RemoteVersion:
    """The version a local file would be stored as."""
    alias = encode(path)
    extension = extension_of(path)
    return RemoteVersion(
        alias=alias,
        sequence_tag=sequence_tag,
        payload_key=payload_key(alias, sequence_tag, extension),
        extension=extension
    )


def conflict_path(path: str, sequence_tag: int) -> str:
    """Sibling path that receives a divergent local copy."""
    pure = PurePosixPath(path)
    name = f"{pure.stem}.conflict-{int(sequence_tag)}{pure.suffix}"
    if pure.parent == PurePosixPath("."):
        return name
    return str(pure.parent / name)
