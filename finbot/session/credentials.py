"""Credential persistence for the WhatsApp session.

Credentials are opaque to finbot: whatever the protocol layer emits on
``creds.update`` is written as JSON to ``<auth_dir>/creds.json`` and handed
back unchanged on the next connect, so a restart does not require pairing
again. One process owns an auth directory at a time.
"""

import asyncio
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from ..errors import CredentialStoreError

logger = logging.getLogger("finbot.session.credentials")

CREDS_FILE = "creds.json"


class FileCredentialStore:
    """Stores session credentials under a fixed local directory."""

    def __init__(self, auth_dir: str | os.PathLike):
        self.auth_dir = Path(auth_dir).expanduser().resolve()
        self._path = self.auth_dir / CREDS_FILE

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    async def load(self) -> Optional[dict]:
        """Load saved credentials, or None if the bot was never paired.

        Raises:
            CredentialStoreError: if the file exists but cannot be read or
                does not contain a JSON object.
        """
        return await asyncio.to_thread(self._read)

    async def on_update(self, creds: dict) -> None:
        """Persist credentials emitted by the protocol layer."""
        await asyncio.to_thread(self._write, creds)

    async def clear(self) -> bool:
        """Delete all persisted session material. Returns True if anything was removed."""
        return await asyncio.to_thread(self._clear)

    # ── Internal ───────────────────────────────────────────────

    def _read(self) -> Optional[dict]:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise CredentialStoreError(f"Cannot read credentials from {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise CredentialStoreError(f"Credentials file {self._path} is not a JSON object")
        return data

    def _write(self, creds: dict):
        try:
            self.auth_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.auth_dir, prefix=".creds-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(creds, f)
                os.replace(tmp, self._path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise CredentialStoreError(f"Cannot write credentials to {self._path}: {e}") from e
        logger.debug(f"Credentials saved to {self._path}")

    def _clear(self) -> bool:
        if not self.auth_dir.exists():
            return False
        shutil.rmtree(self.auth_dir)
        logger.info(f"Removed session data in {self.auth_dir}")
        return True
