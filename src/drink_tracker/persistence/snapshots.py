"""Durable snapshots of the event store.

Design invariants
-----------------
1.  ``save()`` serializes a point-in-time ``StateSnapshot`` taken under the
    store lock; later mutations never leak into an artifact in flight.
2.  Artifacts are written temp-then-rename (``atomic_write_text``), so a
    crash mid-write never touches the previously durable artifact.
3.  Artifact names embed a UTC timestamp and are strictly increasing
    within a process: ``snapshot-2024-06-01T00-00-00-000000Z.json``.
4.  Retention keeps the newest ``max_files`` artifacts, deleting oldest
    first by embedded timestamp.
5.  ``restore()`` walks artifacts newest first and replaces the store
    wholesale with the first one that parses.  Malformed artifacts are
    skipped with a warning; with none valid the store is not touched.

This module provides:

*  ``SnapshotManager``: save / restore / retention / listing.
*  ``SnapshotScheduler``: periodic ``save()`` worker.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from drink_tracker.core.clock import IClock, WallClock
from drink_tracker.core.errors import NotFoundError, PersistenceError
from drink_tracker.core.file_io import TEMP_SUFFIX, atomic_write_text
from drink_tracker.core.models import CURRENT_FORMAT_VERSION, StateSnapshot
from drink_tracker.core.periodic import PeriodicWorker
from drink_tracker.store.event_store import EventStore

logger = logging.getLogger(__name__)

PREFIX = "snapshot-"
SUFFIX = ".json"
_TS_FORMAT = "%Y-%m-%dT%H-%M-%S-%fZ"
# Also matches 1.x names (``...-123Z``, milliseconds).
_NAME_RE = re.compile(
    r"^snapshot-(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3,6})Z\.json$"
)
# An unversioned artifact needs at least one of these (or its 1.x alias).
_COLLECTIONS = frozenset({"items", "consumptions", "markers"})


class ArtifactInfo(BaseModel):
    filename: str
    created_at: datetime
    size_bytes: int


def artifact_name(ts: datetime) -> str:
    return f"{PREFIX}{ts.astimezone(timezone.utc).strftime(_TS_FORMAT)}{SUFFIX}"


def parse_artifact_time(filename: str) -> datetime | None:
    """Timestamp embedded in *filename*, or ``None`` if it is not an artifact."""
    match = _NAME_RE.match(filename)
    if match is None:
        return None
    stamp = match.group(1)
    head, frac = stamp.rsplit("-", 1)
    try:
        parsed = datetime.strptime(f"{head}-{frac.ljust(6, '0')}", "%Y-%m-%dT%H-%M-%S-%f")
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


class SnapshotManager:
    """Saves and restores the whole event store as JSON artifacts.

    Parameters
    ----------
    store:
        The live event store.
    directory:
        Where artifacts live.  Created on first save.
    max_files:
        Retention limit.
    clock:
        Source of artifact timestamps.
    """

    def __init__(
        self,
        store: EventStore,
        directory: str | Path,
        *,
        max_files: int = 30,
        clock: IClock | None = None,
    ) -> None:
        if max_files < 1:
            raise ValueError("max_files must be at least 1")
        self._store = store
        self._directory = Path(directory)
        self._max_files = max_files
        self._clock: IClock = clock or WallClock()
        self._last_stamp: datetime | None = None
        self._save_lock = asyncio.Lock()

        # Counters
        self._saves = 0
        self._failures = 0

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def max_files(self) -> int:
        return self._max_files

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def save(self) -> str:
        """Write the current state to a new artifact and apply retention.

        Returns the artifact filename.

        Raises
        ------
        PersistenceError
            If the artifact could not be written.  Earlier artifacts are
            untouched.
        """
        async with self._save_lock:
            snapshot = self._capture()
            try:
                filename = await asyncio.to_thread(self._write, snapshot)
            except OSError as exc:
                self._failures += 1
                logger.error("Snapshot save failed: %s", exc)
                raise PersistenceError(f"snapshot save failed: {exc}") from exc
            self._saves += 1
            logger.info(
                "Snapshot saved: %s (consumptions=%d)",
                filename,
                len(snapshot.consumptions),
            )
            try:
                deleted = await asyncio.to_thread(self.enforce_retention)
            except OSError:
                logger.exception("Snapshot retention failed")
            else:
                for name in deleted:
                    logger.info("Deleted old snapshot: %s", name)
            return filename

    def _capture(self) -> StateSnapshot:
        """Point-in-time copy stamped with a strictly increasing time."""
        stamp = self._clock.now().astimezone(timezone.utc)
        if self._last_stamp is not None and stamp <= self._last_stamp:
            stamp = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = stamp
        state = self._store.snapshot()
        return state.model_copy(
            update={"format_version": CURRENT_FORMAT_VERSION, "saved_at": stamp},
        )

    def _write(self, snapshot: StateSnapshot) -> str:
        assert snapshot.saved_at is not None
        self._directory.mkdir(parents=True, exist_ok=True)
        filename = artifact_name(snapshot.saved_at)
        atomic_write_text(
            self._directory / filename,
            snapshot.model_dump_json(indent=2),
        )
        return filename

    def enforce_retention(self) -> list[str]:
        """Delete all but the newest ``max_files`` artifacts.  Returns deleted names."""
        artifacts = self._scan()
        doomed = artifacts[self._max_files:]
        for path, _ in doomed:
            path.unlink(missing_ok=True)
        return [path.name for path, _ in doomed]

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(self) -> bool:
        """Replace the store with the newest valid artifact.

        Returns ``True`` if an artifact was restored.  With no valid
        artifact the store is left as it is (empty at startup) and
        ``False`` is returned.
        """
        found = await asyncio.to_thread(self.load_latest)
        if found is None:
            return False
        path, state = found
        self._store.replace(state)
        logger.info(
            "Restored from snapshot: %s (format=%d, items=%d, "
            "consumptions=%d, markers=%d, participants=%d)",
            path.name,
            state.format_version,
            len(state.items),
            len(state.consumptions),
            len(state.markers),
            len(state.participants),
        )
        return True

    def load_latest(self) -> tuple[Path, StateSnapshot] | None:
        """Newest artifact that parses, or ``None``.  Bad ones are skipped."""
        candidates = self._scan()
        if not candidates:
            logger.info("No snapshots found in %s", self._directory)
            return None
        for path, _ in candidates:
            try:
                return path, self.load(path)
            except PersistenceError as exc:
                logger.warning("Skipping unreadable snapshot %s: %s", path.name, exc)
        logger.warning("No valid snapshot in %s", self._directory)
        return None

    @staticmethod
    def load(path: Path) -> StateSnapshot:
        """Parse one artifact.  Missing fields fall back to defaults.

        An unversioned artifact must carry at least one collection; ``{}``
        or an unrelated JSON object is not a snapshot.
        """
        try:
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"cannot read {path.name}: {exc}") from exc
        try:
            state = StateSnapshot.model_validate_json(raw)
        except PydanticValidationError as exc:
            raise PersistenceError(
                f"malformed snapshot {path.name}: {exc.error_count()} error(s)"
            ) from exc
        if state.format_version == 0 and not state.model_fields_set & _COLLECTIONS:
            raise PersistenceError(f"malformed snapshot {path.name}: no collections")
        return state

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def _scan(self) -> list[tuple[Path, datetime]]:
        """Artifacts newest first.  Temp files and strangers are ignored."""
        if not self._directory.is_dir():
            return []
        found: list[tuple[Path, datetime]] = []
        for path in self._directory.iterdir():
            if path.name.endswith(TEMP_SUFFIX) or not path.is_file():
                continue
            created = parse_artifact_time(path.name)
            if created is not None:
                found.append((path, created))
        found.sort(key=lambda pair: (pair[1], pair[0].name), reverse=True)
        return found

    def list_artifacts(self) -> list[ArtifactInfo]:
        """Describe stored artifacts, newest first."""
        out: list[ArtifactInfo] = []
        for path, created in self._scan():
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                continue
            out.append(ArtifactInfo(filename=path.name, created_at=created, size_bytes=size))
        return out

    def latest_path(self) -> Path:
        """Path of the newest artifact.  Raises ``NotFoundError`` if none."""
        artifacts = self._scan()
        if not artifacts:
            raise NotFoundError("snapshot", str(self._directory))
        return artifacts[0][0]

    def stats(self) -> dict[str, int]:
        return {"saves": self._saves, "failures": self._failures}


class SnapshotScheduler(PeriodicWorker):
    """Calls ``SnapshotManager.save()`` every *interval* seconds.

    Failures are logged by the worker loop; the previous artifacts stay.
    """

    def __init__(self, manager: SnapshotManager, interval: float = 120.0) -> None:
        super().__init__(interval=interval)
        self._manager = manager

    async def _work(self) -> None:
        await self._manager.save()
