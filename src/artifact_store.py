"""
Short-lived storage for converted icon pairs.

Each conversion stores its ICO and ICNS buffers under a generated id. The
pair is deleted once the retention window has passed, either by the
background sweeper (one thread per store, driven by a heap of expiry times)
or lazily by the first read that notices the expiry.
"""

from __future__ import annotations

import heapq
import logging
import os
import re
import secrets
import string
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from src.errors import NotFoundError
from src.icon_types import Kind

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 5 * 60
MAX_SWEEP_INTERVAL = 1.0
ID_PATTERN = re.compile(r"^[a-z0-9]+$")
FILENAME_PATTERN = re.compile(r"^([a-z0-9]+)\.(ico|icns)$")

_ALPHABET = string.digits + string.ascii_lowercase
_SUFFIX_LENGTH = 6


def _base36(value: int) -> str:
    digits = []
    while True:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
        if value == 0:
            return "".join(reversed(digits))


def generate_id() -> str:
    """Millisecond timestamp in base 36 followed by a random lower-case suffix."""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return _base36(time.time_ns() // 1_000_000) + suffix


def parse_filename(filename: str) -> tuple[str, Kind]:
    """Split ``<id>.<ext>`` into its id and kind, rejecting anything else."""
    match = FILENAME_PATTERN.fullmatch(filename or "")
    if not match:
        raise NotFoundError(f"Invalid artifact filename: {filename!r}")
    return match.group(1), Kind.from_extension(match.group(2))


@dataclass(frozen=True)
class ArtifactRecord:
    id: str
    ico: bytes
    icns: bytes
    created_at: float

    def payload(self, kind: Kind) -> bytes:
        return self.ico if kind is Kind.ICO else self.icns


class ArtifactStore:
    """Write-once, id-addressed store for ICO/ICNS pairs with timed expiry.

    Build one at startup and hand it to whatever serves requests. When
    ``output_dir`` is given, each pair is also written to ``<id>.ico`` and
    ``<id>.icns`` in that directory; reads are always served from memory.

    Pass ``background_sweep=False`` to rely only on lazy expiry and explicit
    purge_expired() calls (useful with an injected clock).
    """

    def __init__(self, retention_seconds=DEFAULT_RETENTION_SECONDS, output_dir=None,
                 clock=time.monotonic, id_factory=generate_id, background_sweep=True):
        self.retention_seconds = retention_seconds
        self.output_dir = Path(output_dir) if output_dir else None
        self._clock = clock
        self._id_factory = id_factory
        self._background_sweep = background_sweep
        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._records: dict[str, ArtifactRecord] = {}
        self._reserved: set[str] = set()
        self._expiries: list[tuple[float, str]] = []  # heap of (expires_at, id)
        self._sweeper = None
        self._closed = False

        if self.output_dir is not None:
            self.output_dir.mkdir(parents=True, exist_ok=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __len__(self):
        with self._lock:
            return len(self._records)

    def __contains__(self, artifact_id):
        with self._lock:
            return artifact_id in self._records

    def put(self, ico: bytes, icns: bytes) -> str:
        """Store both containers and return the id that addresses them."""
        if not ico or not icns:
            raise ValueError("Both ICO and ICNS buffers are required")

        artifact_id = self._reserve_id()
        try:
            if self.output_dir is not None:
                self._write_files(artifact_id, ico, icns)
            record = ArtifactRecord(artifact_id, bytes(ico), bytes(icns), self._clock())
            with self._lock:
                self._reserved.discard(artifact_id)
                self._records[artifact_id] = record
                self._schedule_expiry(record)
        except BaseException:
            with self._lock:
                self._reserved.discard(artifact_id)
            raise

        logger.info(f"Stored artifact {artifact_id} (ico={len(ico)} bytes, icns={len(icns)} bytes)")
        return artifact_id

    def get(self, artifact_id: str, kind) -> bytes:
        """Return the stored buffer of the requested kind.

        Raises:
            NotFoundError: If the id is malformed, unknown, or expired.
        """
        kind = self._coerce_kind(kind)
        if not isinstance(artifact_id, str) or not ID_PATTERN.fullmatch(artifact_id):
            raise NotFoundError(f"Invalid artifact id: {artifact_id!r}")

        with self._lock:
            record = self._records.get(artifact_id)
            expired = record is not None and self._is_expired(record)

        if record is None:
            raise NotFoundError(f"Artifact {artifact_id} not found or expired")
        if expired:
            self.delete(artifact_id)
            raise NotFoundError(f"Artifact {artifact_id} not found or expired")
        return record.payload(kind)

    def delete(self, artifact_id: str) -> bool:
        """Remove an artifact. Deleting an unknown id is a no-op.

        Returns:
            bool: True if a record was removed by this call.
        """
        with self._lock:
            record = self._records.pop(artifact_id, None)

        if self.output_dir is not None and ID_PATTERN.fullmatch(artifact_id or ""):
            for kind in Kind:
                self._unlink_quietly(self._path_for(artifact_id, kind))

        if record is not None:
            logger.info(f"Deleted artifact {artifact_id}")
        return record is not None

    def purge_expired(self) -> int:
        """Delete every record whose retention window has elapsed."""
        now = self._clock()
        expired = []
        with self._lock:
            while self._expiries and self._expiries[0][0] <= now:
                expired.append(heapq.heappop(self._expiries)[1])
        return sum(1 for artifact_id in expired if self.delete(artifact_id))

    def close(self):
        """Stop the sweeper and delete every artifact still held, files included.

        Nothing a store has handed out may outlive it, so a closed store is
        empty and its output directory holds none of its files.
        """
        with self._lock:
            self._closed = True
            self._wakeup.notify_all()
            sweeper = self._sweeper
            self._sweeper = None
            remaining = list(self._records)
            self._expiries.clear()
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join()
        for artifact_id in remaining:
            self.delete(artifact_id)

    def path_for(self, artifact_id: str, kind) -> Path:
        """On-disk location of an artifact file, when an output directory is set."""
        if self.output_dir is None:
            raise NotFoundError("Artifacts are not materialized on disk")
        if not ID_PATTERN.fullmatch(artifact_id or ""):
            raise NotFoundError(f"Invalid artifact id: {artifact_id!r}")
        return self._path_for(artifact_id, self._coerce_kind(kind))

    # ── internals ─────────────────────────────────────────────────────────

    def _reserve_id(self) -> str:
        with self._lock:
            while True:
                artifact_id = self._id_factory()
                if not ID_PATTERN.fullmatch(artifact_id):
                    raise ValueError(f"Generated id {artifact_id!r} is not lower-case alphanumeric")
                if artifact_id in self._records or artifact_id in self._reserved:
                    continue
                if self.output_dir is not None and any(
                        self._path_for(artifact_id, kind).exists() for kind in Kind):
                    continue
                self._reserved.add(artifact_id)
                return artifact_id

    def _write_files(self, artifact_id, ico, icns):
        written = []
        try:
            for kind, data in ((Kind.ICO, ico), (Kind.ICNS, icns)):
                final_path = self._path_for(artifact_id, kind)
                tmp_path = final_path.with_name(final_path.name + ".tmp")
                tmp_path.write_bytes(data)
                os.replace(tmp_path, final_path)
                written.append(final_path)
        except OSError:
            logger.error(f"Failed to write artifact {artifact_id}", exc_info=True)
            for path in written:
                self._unlink_quietly(path)
            for kind in Kind:
                tmp = self._path_for(artifact_id, kind)
                self._unlink_quietly(tmp.with_name(tmp.name + ".tmp"))
            raise

    def _schedule_expiry(self, record: ArtifactRecord):
        # Caller holds the lock.
        heapq.heappush(self._expiries, (record.created_at + self.retention_seconds, record.id))
        if not self._background_sweep or self._closed:
            return
        if self._sweeper is None:
            self._sweeper = threading.Thread(target=self._sweep_loop, name="artifact-sweeper",
                                             daemon=True)
            self._sweeper.start()
        else:
            self._wakeup.notify()

    def _sweep_loop(self):
        while True:
            with self._lock:
                if self._closed:
                    return
                timeout = MAX_SWEEP_INTERVAL
                if self._expiries:
                    timeout = min(timeout, self._expiries[0][0] - self._clock())
                if timeout > 0:
                    self._wakeup.wait(timeout)
                if self._closed:
                    return
            purged = self.purge_expired()
            if purged:
                logger.debug(f"Sweeper expired {purged} artifact(s)")

    def _is_expired(self, record: ArtifactRecord) -> bool:
        return self._clock() - record.created_at >= self.retention_seconds

    def _path_for(self, artifact_id, kind: Kind) -> Path:
        return self.output_dir / f"{artifact_id}.{kind.extension}"

    @staticmethod
    def _coerce_kind(kind) -> Kind:
        if isinstance(kind, Kind):
            return kind
        try:
            return Kind.from_extension(str(kind))
        except ValueError:
            raise NotFoundError(f"Unknown artifact kind: {kind!r}")

    @staticmethod
    def _unlink_quietly(path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug(f"Could not remove {path}: {e}")
