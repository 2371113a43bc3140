"""Per-version provenance sidecars."""

import mimetypes
from typing import Collection, Optional

from pydantic import ValidationError

from .models import RemoteVersion, SidecarMetadata
from . import alias as alias_codec
from ..exceptions import ObjectNotFound, PartialMoveFailure, SidecarMissing
from ..storage.base import DEFAULT_CONTENT_TYPE, RemoteObjectStore
from ..utils.logging import get_logger


SIDECAR_CONTENT_TYPE = "application/json"


def guess_content_type(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path)
    return content_type or DEFAULT_CONTENT_TYPE


def has_sidecar(payload_key: str, keys: Collection[str]) -> bool:
    """Whether the companion of ``payload_key`` is among ``keys`` (pass a set for large listings)."""
    return alias_codec.sidecar_key(payload_key) in keys


class SidecarManager:
    """Reads and writes ``<payload_key>.meta.json`` companions.

    A payload is only ever written together with its sidecar, payload first.
    """

    def __init__(self, store: RemoteObjectStore):
        self.store = store
        self.logger = get_logger(self.__class__.__name__)

    async def write(self, payload_key: str, sidecar: SidecarMetadata) -> None:
        await self.store.upload(
            alias_codec.sidecar_key(payload_key),
            sidecar.to_json(),
            content_type=SIDECAR_CONTENT_TYPE,
            overwrite=True
        )

    async def read(self, payload_key: str) -> SidecarMetadata:
        """Fetch and parse the sidecar of ``payload_key``.

        Raises:
            SidecarMissing: If the companion is absent or not valid JSON
        """
        key = alias_codec.sidecar_key(payload_key)
        try:
            raw = await self.store.download(key)
        except SidecarMissing:
            raise
        except ObjectNotFound:
            raise SidecarMissing(payload_key)

        try:
            return SidecarMetadata.from_json(raw)
        except ValidationError as e:
            raise SidecarMissing(payload_key, detail=f"unreadable sidecar ({e.error_count()} errors)")

    async def store_version(
        self,
        version: RemoteVersion,
        data: bytes,
        sidecar: SidecarMetadata,
        content_type: Optional[str] = None
    ) -> None:
        """Upload a payload and then its sidecar.

        If the sidecar write fails the payload stays behind as an orphan and
        the error propagates.
        """
        await self.store.upload(
            version.payload_key,
            data,
            content_type=content_type or guess_content_type(sidecar.original_path),
            overwrite=True
        )

        try:
            await self.write(version.payload_key, sidecar)
        except Exception as e:
            self.logger.error(
                "Sidecar write failed, payload left orphaned",
                payload_key=version.payload_key,
                error=str(e)
            )
            raise

        self.logger.debug("Stored version", payload_key=version.payload_key, size=len(data))

    async def remove_version(self, version: RemoteVersion) -> None:
        """Delete a payload together with its sidecar."""
        await self.store.remove([version.payload_key, version.sidecar_key])

    async def move_version(self, old: RemoteVersion, new: RemoteVersion, sidecar: SidecarMetadata) -> None:
        """Move one version and rewrite its sidecar with new provenance.

        Raises:
            PartialMoveFailure: If the new keys exist but an old key could not be removed
        """
        partial: Optional[PartialMoveFailure] = None

        if old.payload_key != new.payload_key:
            try:
                await self.store.move(old.payload_key, new.payload_key)
            except PartialMoveFailure as e:
                partial = e

        await self.write(new.payload_key, sidecar)

        if old.sidecar_key != new.sidecar_key:
            try:
                await self.store.remove([old.sidecar_key])
            except Exception as e:
                self.logger.error(
                    "Old sidecar left behind after move",
                    old_key=old.sidecar_key,
                    new_key=new.sidecar_key,
                    error=str(e)
                )
                raise PartialMoveFailure(old.sidecar_key, new.sidecar_key, e)

        if partial is not None:
            raise partial
