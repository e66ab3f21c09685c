# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Execution state stores.

A state store is the sole source of truth for workflow progress. The step
executor reads the state at the start of every call and writes it back at
most once; nothing is cached in between.

Two implementations are provided:

- InMemoryStateStore: for tests and embedding.
- FileStateStore: one JSON document per instance, replaced atomically.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from pydantic import ValidationError as PydanticValidationError

from stepwise.engine.state import ExecutionState
from stepwise.exceptions import PersistenceError

logger = logging.getLogger(__name__)

STATE_FILE_PREFIX = "."
STATE_FILE_SUFFIX = ".state.json"


def atomic_write_text(path: Path, text: str) -> None:
    """Replace a file's content atomically.

    The text is written to a temporary file in the target directory, flushed
    and fsynced, then moved over the target with ``os.replace``. A crash
    leaves either the old or the new content, never a mixture.

    Raises:
        OSError: If the file cannot be written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_name: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f"{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_name = tmp.name
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
        _fsync_dir(path.parent)
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.warning("Could not remove temporary file %s", tmp_name)


def _fsync_dir(directory: Path) -> None:
    """Flush a directory entry so a rename survives a crash (POSIX only)."""
    if os.name != "posix":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class StateStore(ABC):
    """Durable key-value persistence of one ExecutionState per instance id.

    Implementations must make ``write`` atomic: concurrent readers never
    observe a torn document, and a crash mid-write leaves either the old or
    the new state.
    """

    @abstractmethod
    def read(self, instance_id: str) -> ExecutionState | None:
        """Return the persisted state, or None if the instance does not exist.

        Raises:
            PersistenceError: If the state exists but cannot be read.
        """
        ...

    @abstractmethod
    def write(self, instance_id: str, state: ExecutionState) -> None:
        """Persist the state, replacing any previous document atomically.

        Raises:
            PersistenceError: If the state cannot be written.
        """
        ...

    @abstractmethod
    def delete(self, instance_id: str) -> bool:
        """Delete the persisted state.

        Returns:
            True if a document was deleted, False if none existed.

        Raises:
            PersistenceError: If the document exists but cannot be removed.
        """
        ...

    @abstractmethod
    def list_ids(self) -> list[str]:
        """Return the ids of all persisted instances, sorted."""
        ...

    def exists(self, instance_id: str) -> bool:
        """True if a state document exists for the instance."""
        return self.read(instance_id) is not None


class InMemoryStateStore(StateStore):
    """State store backed by a dict of serialized records.

    States are stored as their persisted records, so every read returns a
    fresh object and callers can never mutate stored state in place.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}

    def read(self, instance_id: str) -> ExecutionState | None:
        record = self._records.get(instance_id)
        if record is None:
            return None
        return ExecutionState.from_record(json.loads(json.dumps(record)))

    def write(self, instance_id: str, state: ExecutionState) -> None:
        try:
            record = json.loads(json.dumps(state.to_record()))
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                f"State for '{instance_id}' is not JSON-serializable: {e}",
                suggestion="Bind only JSON-compatible values to workflow variables",
                instance_id=instance_id,
            ) from e
        self._records[instance_id] = record

    def delete(self, instance_id: str) -> bool:
        return self._records.pop(instance_id, None) is not None

    def list_ids(self) -> list[str]:
        return sorted(self._records)


class FileStateStore(StateStore):
    """State store keeping one ``.<id>.state.json`` document per instance.

    Writes go to a temporary file in the same directory which is flushed,
    fsynced and then moved over the target with ``os.replace``. Instance ids
    are percent-encoded in file names, so nested ids such as ``prd/3`` are
    safe.

    Example:
        >>> store = FileStateStore(".stepwise/workflow-states")
        >>> store.write("prd-1", state)
        >>> store.read("prd-1").current_step_index
        0
    """

    def __init__(self, state_dir: str | Path) -> None:
        self.state_dir = Path(state_dir)

    def path_for(self, instance_id: str) -> Path:
        """Return the document path for an instance id."""
        encoded = quote(instance_id, safe="")
        return self.state_dir / f"{STATE_FILE_PREFIX}{encoded}{STATE_FILE_SUFFIX}"

    def read(self, instance_id: str) -> ExecutionState | None:
        path = self.path_for(instance_id)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(
                f"Failed to read state for '{instance_id}': {e}",
                file_path=str(path),
                instance_id=instance_id,
            ) from e

        try:
            return ExecutionState.from_record(json.loads(content))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise PersistenceError(
                f"Corrupt state document for '{instance_id}': {e}",
                suggestion="Reset the instance to discard the unreadable state",
                file_path=str(path),
                instance_id=instance_id,
            ) from e

    def write(self, instance_id: str, state: ExecutionState) -> None:
        path = self.path_for(instance_id)
        try:
            payload = json.dumps(state.to_record(), indent=2)
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                f"State for '{instance_id}' is not JSON-serializable: {e}",
                suggestion="Bind only JSON-compatible values to workflow variables",
                instance_id=instance_id,
            ) from e

        try:
            atomic_write_text(path, payload)
        except OSError as e:
            raise PersistenceError(
                f"Failed to write state for '{instance_id}': {e}",
                file_path=str(path),
                instance_id=instance_id,
            ) from e

    def delete(self, instance_id: str) -> bool:
        path = self.path_for(instance_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(
                f"Failed to delete state for '{instance_id}': {e}",
                file_path=str(path),
                instance_id=instance_id,
            ) from e
        return True

    def list_ids(self) -> list[str]:
        if not self.state_dir.is_dir():
            return []
        ids = []
        for path in self.state_dir.iterdir():
            name = path.name
            if name.startswith(STATE_FILE_PREFIX) and name.endswith(STATE_FILE_SUFFIX):
                encoded = name[len(STATE_FILE_PREFIX) : -len(STATE_FILE_SUFFIX)]
                ids.append(unquote(encoded))
        return sorted(ids)
