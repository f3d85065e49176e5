"""
Local Filesystem Primary Store

Primary Store backed by a directory tree ({root}/{bucket}/{key}) for
development and tests. Writes replace the object atomically.
"""

import asyncio
import os
import tempfile
from pathlib import Path

import structlog

from ...domain.documents.exceptions import NotFoundError, UnavailableError, ValidationError
from ...domain.documents.repository_interfaces import PrimaryStore
from ...domain.documents.value_objects import StorageLocator

logger = structlog.get_logger(__name__)


class LocalPrimaryStore(PrimaryStore):
    """Write documents to the local filesystem."""

    def __init__(self, root: Path):
        self._root = Path(root)

    def _resolve(self, locator: StorageLocator) -> Path:
        path = (self._root / locator.bucket / locator.key).resolve()
        if self._root.resolve() not in path.parents:
            raise ValidationError(
                f"Locator {locator.uri} escapes the store root", field="key"
            )
        return path

    def _write(self, path: Path, body: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(body)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def put(self, locator: StorageLocator, body: bytes) -> None:
        path = self._resolve(locator)
        try:
            await asyncio.to_thread(self._write, path, body)
        except OSError as e:
            raise UnavailableError(
                f"Cannot write {locator.uri}: {e}", details={"path": str(path)}
            ) from e
        logger.debug("primary_object_written", locator=locator.uri, size_bytes=len(body))

    async def get(self, locator: StorageLocator) -> bytes:
        path = self._resolve(locator)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise NotFoundError(
                f"Primary object {locator.uri} not found", key=locator.key
            ) from None
        except OSError as e:
            raise UnavailableError(
                f"Cannot read {locator.uri}: {e}", details={"path": str(path)}
            ) from e

    async def delete(self, locator: StorageLocator) -> None:
        path = self._resolve(locator)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise UnavailableError(
                f"Cannot delete {locator.uri}: {e}", details={"path": str(path)}
            ) from e
        logger.debug("primary_object_deleted", locator=locator.uri)
