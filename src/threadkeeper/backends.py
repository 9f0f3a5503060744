"""Key-document persistence backends for the thread store.

A backend holds named JSON documents (``threads``, ``collections``, ``tags``,
``userPrefs``, ``metadata``, ``syncState``, ``auth``) and is read and written
whole-document at a time. Writes of a single ``set`` call are applied
together.

The file backend keeps everything in one JSON object:
    {
        "threads": {"thread_abc": {...}},
        "collections": {"default": {...}},
        "metadata": {"version": 1, ...},
        ...
    }
"""

import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

from .errors import BackendUnavailableError

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Interface the thread store reads from and writes to."""

    @abstractmethod
    def get(self, keys: Iterable[str] | None = None) -> dict:
        """Return the documents stored under ``keys`` (all documents if None).

        Missing keys are simply absent from the result.
        """

    @abstractmethod
    def set(self, items: dict) -> None:
        """Store every key/document pair in ``items`` in one write."""

    @abstractmethod
    def remove(self, keys: Iterable[str]) -> None:
        """Delete the documents stored under ``keys``."""


class MemoryBackend(StorageBackend):
    """In-process backend; documents are copied on the way in and out."""

    def __init__(self, initial: dict | None = None):
        self._data: dict = copy.deepcopy(initial) if initial else {}

    def get(self, keys: Iterable[str] | None = None) -> dict:
        if keys is None:
            return copy.deepcopy(self._data)
        return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    def set(self, items: dict) -> None:
        # Serialize first so a non-JSON value fails before anything changes
        encoded = json.dumps(items)
        self._data.update(json.loads(encoded))

    def remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)


class JsonFileBackend(StorageBackend):
    """Backend persisting all documents to ``<data_dir>/store.json``."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.store_file = self.data_dir / "store.json"

    def _load(self) -> dict:
        if not self.store_file.exists():
            return {}
        try:
            return json.loads(self.store_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise BackendUnavailableError(
                f"Store file {self.store_file} is corrupt: {e}"
            ) from e
        except OSError as e:
            raise BackendUnavailableError(
                f"Cannot read store file {self.store_file}: {e}"
            ) from e

    def _write(self, data: dict) -> None:
        tmp_file = self.store_file.with_suffix(".json.tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            tmp_file.write_text(
                json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8"
            )
            os.replace(tmp_file, self.store_file)
        except OSError as e:
            raise BackendUnavailableError(
                f"Cannot write store file {self.store_file}: {e}"
            ) from e

    def get(self, keys: Iterable[str] | None = None) -> dict:
        data = self._load()
        if keys is None:
            return data
        return {k: data[k] for k in keys if k in data}

    def set(self, items: dict) -> None:
        data = self._load()
        data.update(items)
        self._write(data)
        logger.debug("Wrote %s to %s", ", ".join(sorted(items)), self.store_file)

    def remove(self, keys: Iterable[str]) -> None:
        data = self._load()
        removed = [k for k in keys if k in data]
        for key in removed:
            del data[key]
        if removed:
            self._write(data)
