"""Storage of the files deposited by file-transfer tests."""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from agent_orchestrator.errors import NotFoundError, StorageError

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class FileStorage:
    """Keeps uploaded files under unique names in a root directory."""

    root: Path

    async def store(self, original_name: str, content: bytes) -> str:
        """Store a file and return its unique name.

        Raises:
            StorageError: If the name has no extension or the file cannot be written

        """
        extension = Path(original_name).suffix
        if not extension:
            raise StorageError(f"File {original_name!r} must have an extension")

        name = f"{uuid.uuid4()}{extension}"
        destination = self.path(name)
        try:
            await asyncio.to_thread(self._write, destination, content)
        except OSError as e:
            raise StorageError(f"Failed to store {original_name}: {e}") from e

        log.info("Stored %s as %s (%d bytes)", original_name, name, len(content))
        return name

    async def read(self, name: str) -> bytes:
        """Return the content of a stored file.

        Raises:
            NotFoundError: If no file is stored under that name
            StorageError: If the file cannot be read

        """
        path = self.path(name)
        if not path.is_file():
            raise NotFoundError(f"Stored file not found: {name}")
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise StorageError(f"Failed to read {name}: {e}") from e

    def path(self, name: str) -> Path:
        """Location of a stored file, which must stay inside the root."""
        path = (self.root / name).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise StorageError(f"Refusing to access {name} outside of {self.root}")
        return path

    def _write(self, destination: Path, content: bytes) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(content)
