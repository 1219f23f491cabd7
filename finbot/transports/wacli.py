"""WhatsApp transport backed by the wacli command line client.

wacli keeps the WhatsApp web socket alive with ``wacli sync --follow`` and
writes every message it sees into a local SQLite database. This transport
maps that onto finbot's session events:

- pairing runs ``wacli auth`` and forwards the QR payload it prints
- the sync process being up means ``open``; its exit means ``close``
- new rows in the messages table become ``messages.upsert``

``wacli sync --follow`` holds an exclusive lock on the store, so sending
pauses the sync process, runs ``wacli send text`` and resumes it.

Requires the wacli binary: ``go install github.com/steipete/wacli@latest``.
"""

import asyncio
import logging
import os
import re
import shutil
import sqlite3
import time
from collections import deque
from pathlib import Path
from typing import Any, Optional

from ..errors import TransportError
from ..session.protocol import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    MESSAGES_UPSERT,
    ConnectionUpdate,
    DisconnectReason,
    MessagesUpsert,
    ProtocolSession,
    SessionOptions,
    Transport,
)

logger = logging.getLogger("finbot.transports.wacli")

_WACLI_INSTALL_DIRS = ("~/.local/bin", "~/go/bin")
DEFAULT_STORE_DIR = "~/.wacli"
_POLL_INTERVAL = 2.0
_STARTUP_GRACE = 1.0
_SEND_TIMEOUT = 30
_STDERR_TAIL_LINES = 20
_STATUS_BROADCAST = "status@broadcast"

# whatsmeow pairing payloads look like "2@<ref>,<noise key>,<identity key>,<adv secret>"
_QR_PAYLOAD_RE = re.compile(r"^\d@[A-Za-z0-9+/=_\-]+(,[A-Za-z0-9+/=_\-]+){3}$")


def resolve_wacli(explicit: Optional[str] = None) -> Optional[str]:
    """Find the wacli binary on PATH or in the usual Go install locations."""
    if explicit:
        return explicit if os.path.isfile(explicit) and os.access(explicit, os.X_OK) else None

    found = shutil.which("wacli")
    if found:
        return found

    candidates = [os.path.join(os.path.expanduser(d), "wacli") for d in _WACLI_INSTALL_DIRS]
    gopath = os.environ.get("GOPATH", "").strip()
    if gopath:
        candidates.append(os.path.join(gopath, "bin", "wacli"))
    for candidate in candidates:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return None


def classify_exit(returncode: Optional[int], stderr: str) -> int:
    """Map a wacli sync exit to a disconnect reason code."""
    text = stderr.lower()
    if "logged out" in text or "401" in text:
        return DisconnectReason.LOGGED_OUT
    if "replaced" in text:
        return DisconnectReason.CONNECTION_REPLACED
    if "timeout" in text or "timed out" in text:
        return DisconnectReason.TIMED_OUT
    if returncode == 0:
        return DisconnectReason.CONNECTION_CLOSED
    return DisconnectReason.CONNECTION_LOST


def row_to_message(row: dict) -> dict:
    """Convert a wacli messages row into the upsert message shape."""
    return {
        "key": {
            "remoteJid": row.get("chat_jid") or "",
            "fromMe": bool(row.get("from_me")),
            "id": row.get("msg_id"),
            "participant": row.get("sender_jid"),
        },
        "pushName": row.get("sender_name") or "",
        "message": {"conversation": row.get("text") or ""},
    }


class WacliTransport(Transport):
    """Creates :class:`WacliSession` objects."""

    def __init__(
        self,
        wacli_path: Optional[str] = None,
        store_dir: str = DEFAULT_STORE_DIR,
        poll_interval: float = _POLL_INTERVAL,
    ):
        self._wacli_path = wacli_path or os.environ.get("FINBOT_WACLI_PATH")
        self._store_dir = Path(store_dir).expanduser()
        self._poll_interval = poll_interval

    def _binary(self) -> str:
        path = resolve_wacli(self._wacli_path)
        if not path:
            raise TransportError(
                "wacli binary not found. Install: go install github.com/steipete/wacli@latest"
            )
        return path

    async def latest_version(self) -> tuple[tuple[int, ...], bool]:
        binary = self._binary()
        try:
            proc = await asyncio.create_subprocess_exec(
                binary, "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            out, _ = await asyncio.wait_for(proc.communicate(), timeout=10)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Cannot query wacli version: {e}")
            return (0,), False
        match = re.search(r"(\d+)\.(\d+)(?:\.(\d+))?", out.decode("utf-8", errors="replace"))
        if not match:
            return (0,), False
        return tuple(int(p) for p in match.groups() if p is not None), False

    def create_session(
        self,
        *,
        version: tuple[int, ...],
        credentials: Optional[dict],
        options: SessionOptions,
    ) -> "WacliSession":
        return WacliSession(
            self._binary(),
            self._store_dir,
            credentials=credentials,
            options=options,
            poll_interval=self._poll_interval,
        )


class WacliSession(ProtocolSession):
    """One run of ``wacli sync --follow`` plus the inbound DB poller."""

    def __init__(
        self,
        wacli_path: str,
        store_dir: Path,
        *,
        credentials: Optional[dict],
        options: SessionOptions,
        poll_interval: float = _POLL_INTERVAL,
    ):
        super().__init__()
        self._wacli = wacli_path
        self._store_dir = store_dir
        self._credentials = credentials
        self._options = options
        self._poll_interval = poll_interval
        self._process: Optional[asyncio.subprocess.Process] = None
        self._sync_stderr: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        self._tasks: list[asyncio.Task] = []
        self._send_lock = asyncio.Lock()
        self._last_rowid = 0
        self._paused = False
        self._ended = False

    @property
    def _db_path(self) -> Path:
        return self._store_dir / "wacli.db"

    def _is_paired(self) -> bool:
        return bool(self._credentials) and (self._store_dir / "session.db").is_file()

    # ── ProtocolSession ────────────────────────────────────────

    async def start(self) -> None:
        await self.ev.emit(CONNECTION_UPDATE, ConnectionUpdate(connection="connecting"))
        if self._is_paired():
            self._spawn(self._open())
        else:
            self._spawn(self._pair_then_open())

    async def send_message(self, jid: str, content: dict, options: Optional[dict] = None) -> Any:
        if self._ended:
            raise TransportError("session has ended")
        text = content.get("text") or ""
        if not text:
            return None
        if options and options.get("quoted"):
            logger.debug("wacli cannot quote messages, sending plain text")

        async with self._send_lock:
            was_syncing = self._process is not None
            if was_syncing:
                self._paused = True
                await self._stop_sync()
            try:
                await self._send_text(jid, text)
            finally:
                if was_syncing and not self._ended:
                    ok = await self._start_sync()
                    self._paused = False
                    if not ok:
                        await self._emit_close(DisconnectReason.CONNECTION_LOST, "failed to resume sync")
        return {"to": jid}

    async def end(self, error: Optional[BaseException] = None) -> None:
        if self._ended:
            return
        self._ended = True
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
        for task in self._tasks:
            if task is current:
                continue
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass
        self._tasks = []
        await self._stop_sync()

    # ── Pairing ───────────────────────────────────────────────

    async def _pair_then_open(self):
        proc = await asyncio.create_subprocess_exec(
            self._wacli, "auth",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        output = []
        assert proc.stdout is not None
        async for raw in proc.stdout:
            line = raw.decode("utf-8", errors="replace").strip()
            if _QR_PAYLOAD_RE.match(line):
                await self.ev.emit(CONNECTION_UPDATE, ConnectionUpdate(qr=line))
            elif line:
                output.append(line)
                logger.debug(f"wacli auth: {line}")
        rc = await proc.wait()
        if rc != 0:
            await self._emit_close(DisconnectReason.CONNECTION_CLOSED, f"pairing failed: {' '.join(output[-3:])}")
            return

        self._credentials = {
            "registered": True,
            "paired_at": int(time.time()),
            "store_dir": str(self._store_dir),
            "browser": list(self._options.browser),
        }
        await self.ev.emit(CREDS_UPDATE, self._credentials)
        await self._open()

    # ── Sync process ──────────────────────────────────────────

    async def _open(self):
        if not await self._start_sync():
            await self._emit_close(DisconnectReason.CONNECTION_CLOSED, "wacli sync did not start")
            return
        await asyncio.sleep(_STARTUP_GRACE)
        if self._process is None or self._process.returncode is not None:
            return  # the monitor reports the exit
        self._last_rowid = await asyncio.to_thread(self._max_rowid)
        self._spawn(self._poll_loop())
        await self.ev.emit(CONNECTION_UPDATE, ConnectionUpdate(connection="open"))

    async def _start_sync(self) -> bool:
        try:
            self._process = await asyncio.create_subprocess_exec(
                self._wacli, "sync", "--follow",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Failed to start wacli sync: {e}")
            self._process = None
            return False
        self._sync_stderr = deque(maxlen=_STDERR_TAIL_LINES)
        self._spawn(self._monitor(self._process, self._sync_stderr))
        return True

    async def _stop_sync(self):
        proc = self._process
        self._process = None
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=5)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        except ProcessLookupError:
            pass

    async def _monitor(self, proc: asyncio.subprocess.Process, tail: deque):
        # sync runs for the whole session, so only the last lines of stderr are kept
        if proc.stderr is not None:
            while True:
                try:
                    raw = await proc.stderr.readline()
                except ValueError:
                    continue  # line longer than the stream limit, dropped
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                if line:
                    tail.append(line)
                    logger.debug(f"wacli sync: {line}")
        rc = await proc.wait()
        # Stopped on purpose: ended, paused for a send, or replaced.
        if self._ended or self._paused or proc is not self._process:
            return
        self._process = None
        text = "\n".join(tail)
        logger.warning(f"wacli sync exited (rc={rc}): {text[-200:] or 'no output'}")
        await self._emit_close(classify_exit(rc, text), text[-200:] or f"wacli exited with {rc}")

    async def _send_text(self, jid: str, text: str):
        proc = await asyncio.create_subprocess_exec(
            self._wacli, "send", "text",
            "--to", jid,
            "--message", text,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=_SEND_TIMEOUT)
        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace") if stderr else ""
            raise TransportError(f"wacli send text failed (rc={proc.returncode}): {err[:200]}")

    # ── Inbound poller ────────────────────────────────────────

    def _max_rowid(self) -> int:
        if not self._db_path.is_file():
            return 0
        conn = sqlite3.connect(self._db_path, timeout=5)
        try:
            return conn.execute("SELECT MAX(rowid) FROM messages").fetchone()[0] or 0
        finally:
            conn.close()

    def _fetch_rows(self, after: int) -> list[dict]:
        if not self._db_path.is_file():
            return []
        conn = sqlite3.connect(self._db_path, timeout=5)
        conn.row_factory = sqlite3.Row
        try:
            cur = conn.execute(
                """
                SELECT rowid, chat_jid, sender_jid, sender_name, text, from_me, msg_id
                FROM messages
                WHERE rowid > ? AND chat_jid != ?
                ORDER BY rowid ASC
                """,
                (after, _STATUS_BROADCAST),
            )
            return [dict(row) for row in cur.fetchall()]
        finally:
            conn.close()

    async def _poll_loop(self):
        while not self._ended:
            await asyncio.sleep(self._poll_interval)
            try:
                rows = await asyncio.to_thread(self._fetch_rows, self._last_rowid)
            except sqlite3.Error as e:
                logger.error(f"Error reading wacli database: {e}")
                continue
            if not rows:
                continue
            self._last_rowid = rows[-1]["rowid"]
            await self.ev.emit(MESSAGES_UPSERT, MessagesUpsert(messages=[row_to_message(r) for r in rows]))

    # ── Internal ───────────────────────────────────────────────

    def _spawn(self, coro):
        # sync restarts after every send, drop the monitors that already finished
        self._tasks = [t for t in self._tasks if not t.done()]
        self._tasks.append(asyncio.create_task(coro))

    async def _emit_close(self, status: int, reason: str):
        if self._ended:
            return
        await self.ev.emit(
            CONNECTION_UPDATE,
            ConnectionUpdate(connection="close", status_code=status, error=TransportError(reason)),
        )
