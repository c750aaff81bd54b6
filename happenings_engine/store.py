"""JSON-backed definition and override store with atomic writes.

This is the persistence boundary the engine reads a consistent snapshot
from, and the only place validated override writes land. Concurrent writes
to the same (definition_id, date_key) are serialized by a lock; the last
writer wins.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .domain.canonicalizer import canonical_definition_row, canonicalize
from .domain.exceptions import StoreError
from .domain.models import EventDefinition, OccurrenceOverride
from .domain.override_writer import OverrideWrite, WriteAction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreSnapshot:
    """Definitions and overrides read together under one lock."""

    definitions: tuple[EventDefinition, ...]
    overrides: tuple[OccurrenceOverride, ...]


class JsonEventStore:
    """Persistent store for event definitions and occurrence overrides.

    The on-disk format is a JSON object ``{"definitions": [...],
    "overrides": [...]}`` using the stored row field names.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        """Create a JsonEventStore.

        Args:
            path: Optional path to JSON file. Defaults to package-local
                'happenings_engine/happenings.json'.
        """
        if path:
            self._path = Path(path)
        else:
            self._path = Path(__file__).resolve().parent.joinpath("happenings.json")

        self._lock = threading.Lock()
        self._definitions: dict[str, EventDefinition] = {}
        self._overrides: dict[tuple[str, date], OccurrenceOverride] = {}

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.debug("Could not ensure directory for event store: %s", self._path.parent)

        self.load()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        """Load JSON from disk (if it exists) into memory.

        Malformed rows are skipped with a warning; a malformed document
        raises StoreError.
        """
        with self._lock:
            if not self._path.exists():
                logger.debug("Event store file not found; starting empty: %s", self._path)
                self._definitions = {}
                self._overrides = {}
                return

            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    data = json.load(fh)
            except (OSError, json.JSONDecodeError) as exc:
                raise StoreError(f"failed to read event store {self._path}: {exc}") from exc
            if not isinstance(data, dict):
                raise StoreError("event store JSON root must be an object")

            definitions: dict[str, EventDefinition] = {}
            for row in data.get("definitions", []):
                try:
                    definition = EventDefinition.model_validate(row)
                except ValidationError as exc:
                    logger.warning("Skipping malformed definition row %r: %s", _row_id(row), exc)
                    continue
                definitions[definition.id] = definition

            overrides: dict[tuple[str, date], OccurrenceOverride] = {}
            for row in data.get("overrides", []):
                try:
                    override = OccurrenceOverride.model_validate(row)
                except ValidationError as exc:
                    logger.warning("Skipping malformed override row %r: %s", _row_id(row), exc)
                    continue
                overrides[override.key] = override

            self._definitions = definitions
            self._overrides = overrides
            logger.debug(
                "Loaded event store %s (%d definitions, %d overrides)",
                self._path,
                len(self._definitions),
                len(self._overrides),
            )

    def _persist_locked(self) -> None:
        """Persist current in-memory state to disk atomically.

        Writes to a temporary file in the same directory then replaces the
        target. Caller holds the lock.
        """
        data = {
            "definitions": [d.model_dump(mode="json") for d in self._definitions.values()],
            "overrides": [o.model_dump(mode="json") for o in self._overrides.values()],
        }

        tmp_path: Optional[Path] = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=self._path.parent, delete=False, encoding="utf-8", suffix=".tmp"
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(data, tf, ensure_ascii=False, indent=2)
                tf.flush()
                with contextlib.suppress(OSError):
                    os.fsync(tf.fileno())
            tmp_path.replace(self._path)
        except OSError as exc:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise StoreError(f"failed to persist event store to {self._path}: {exc}") from exc

    def snapshot(self, start: Optional[date] = None, end: Optional[date] = None) -> StoreSnapshot:
        """Return a consistent copy of definitions and in-range overrides.

        Args:
            start: Optional first override date to include
            end: Optional last override date to include
        """
        with self._lock:
            definitions = tuple(self._definitions.values())
            overrides = tuple(
                o
                for o in self._overrides.values()
                if (start is None or o.date_key >= start) and (end is None or o.date_key <= end)
            )
        return StoreSnapshot(definitions=definitions, overrides=overrides)

    def get_definition(self, definition_id: str) -> Optional[EventDefinition]:
        with self._lock:
            return self._definitions.get(definition_id)

    def get_override(self, definition_id: str, date_key: date) -> Optional[OccurrenceOverride]:
        with self._lock:
            return self._overrides.get((definition_id, date_key))

    def list_overrides(
        self, definition_id: str, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[OccurrenceOverride]:
        """Return one definition's overrides in date order."""
        with self._lock:
            rows = [
                o
                for o in self._overrides.values()
                if o.definition_id == definition_id
                and (start is None or o.date_key >= start)
                and (end is None or o.date_key <= end)
            ]
        return sorted(rows, key=lambda o: o.date_key)

    def put_definition(self, definition: EventDefinition) -> EventDefinition:
        """Canonicalize a definition row, then insert or replace it and persist.

        The stored row carries the canonical recurrence columns.

        Returns:
            The row as stored

        Raises:
            CanonicalizationError: if the schedule cannot be read or its
                weekday disagrees with its anchor date
            StoreError: if the store cannot be written
        """
        row = canonical_definition_row(definition, canonicalize(definition, strict=True))
        with self._lock:
            previous = self._definitions.get(row.id)
            self._definitions[row.id] = row
            try:
                self._persist_locked()
            except StoreError:
                _restore(self._definitions, row.id, previous)
                raise
        return row

    def apply_override_write(self, write: OverrideWrite) -> Optional[OccurrenceOverride]:
        """Apply a validated write: upsert the row, or delete it on revert.

        Returns:
            The stored override, or None when the row was removed
        """
        key = (write.definition_id, write.date_key)
        with self._lock:
            if write.definition_id not in self._definitions:
                raise StoreError(f"unknown definition {write.definition_id}")
            if write.action == WriteAction.REVERT:
                self._remove_override_locked(key)
                return None
            if write.override is None:
                raise StoreError("upsert write carries no override row")
            previous = self._overrides.get(key)
            self._overrides[key] = write.override
            try:
                self._persist_locked()
            except StoreError:
                _restore(self._overrides, key, previous)
                raise
            return write.override

    def delete_override(self, definition_id: str, date_key: date) -> bool:
        """Remove an override row. Returns True if one existed."""
        with self._lock:
            return self._remove_override_locked((definition_id, date_key))

    def _remove_override_locked(self, key: tuple[str, date]) -> bool:
        removed = self._overrides.pop(key, None)
        if removed is None:
            return False
        try:
            self._persist_locked()
        except StoreError:
            self._overrides[key] = removed
            raise
        return True


def _restore(rows: dict[Any, Any], key: Any, previous: Any) -> None:
    if previous is None:
        rows.pop(key, None)
    else:
        rows[key] = previous


def _row_id(row: Any) -> Any:
    if isinstance(row, dict):
        return row.get("id") or (row.get("definition_id"), row.get("date_key"))
    return None
