"""
Durable storage for per-session configuration.

The JSON store keeps ``{"version": ..., "sessions": {"<server>:<session>": {...}}}``
on disk and serializes writers across threads and processes with portalocker.
"""

from __future__ import annotations

import json
import logging
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

import portalocker

from .models import SessionConfig, SessionKey

logger = logging.getLogger(__name__)

STORE_VERSION = "1.0"


class ConfigStore(ABC):
    """Interface of the durable per-session config store."""

    @abstractmethod
    def load(self) -> dict[SessionKey, dict[str, Any]]:
        """Return every stored partial config keyed by session."""

    @abstractmethod
    def save(self, key: SessionKey, config: SessionConfig):
        """Persist the full config for one session."""

    @abstractmethod
    def delete(self, key: SessionKey):
        """Forget the stored config for one session."""


class MemoryConfigStore(ConfigStore):
    """In-process store, used by tests and one-shot commands."""

    def __init__(self, initial: dict[SessionKey, dict[str, Any]] | None = None):
        self.data: dict[SessionKey, dict[str, Any]] = dict(initial or {})

    def load(self) -> dict[SessionKey, dict[str, Any]]:
        return {key: dict(value) for key, value in self.data.items()}

    def save(self, key: SessionKey, config: SessionConfig):
        self.data[key] = config.model_dump()

    def delete(self, key: SessionKey):
        self.data.pop(key, None)


class JsonConfigStore(ConfigStore):
    """File-backed store with atomic replace and an exclusive lock file."""

    _locks_registry: dict[str, threading.RLock] = {}
    _locks_registry_guard = threading.Lock()

    def __init__(self, file_path: Path, lock_timeout: float = 10.0):
        self.file_path = Path(file_path)
        self.lock_path = self.file_path.with_suffix('.lock')
        self.lock_timeout = lock_timeout
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        self._thread_lock = self._get_thread_lock(self.file_path)

    @classmethod
    def _get_thread_lock(cls, file_path: Path) -> threading.RLock:
        key = str(Path(file_path).resolve())
        with cls._locks_registry_guard:
            lk = cls._locks_registry.get(key)
            if lk is None:
                lk = threading.RLock()
                cls._locks_registry[key] = lk
            return lk

    @staticmethod
    def _empty_data() -> dict:
        return {"version": STORE_VERSION, "sessions": {}, "last_modified": None}

    def _acquire_lock(self):
        start_time = time.time()
        lock_file = open(self.lock_path, 'w')
        while True:
            try:
                portalocker.lock(lock_file, portalocker.LOCK_EX | portalocker.LOCK_NB)
                return lock_file
            except (OSError, portalocker.exceptions.LockException) as exc:
                if time.time() - start_time > self.lock_timeout:
                    lock_file.close()
                    raise TimeoutError(f"Lock timeout: {self.file_path}") from exc
                time.sleep(0.05)

    def _release_lock(self, lock_file):
        try:
            portalocker.unlock(lock_file)
        finally:
            lock_file.close()

    def _load_data(self) -> dict:
        if not self.file_path.exists():
            return self._empty_data()
        try:
            with open(self.file_path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable config store {self.file_path}: {e}")
            return self._empty_data()
        if not isinstance(data, dict) or not isinstance(data.get("sessions"), dict):
            logger.warning(f"Ignoring malformed config store {self.file_path}")
            return self._empty_data()
        return data

    def _save_data(self, data: dict):
        data["last_modified"] = datetime.now().isoformat()
        with tempfile.NamedTemporaryFile('w', dir=str(self.file_path.parent), prefix=self.file_path.stem + '.',
                                         suffix='.tmp', delete=False) as tf:
            json.dump(data, tf, indent=2, default=str)
            tmp_name = Path(tf.name)
        tmp_name.replace(self.file_path)

    def _update(self, update_func):
        with self._thread_lock:
            lock = self._acquire_lock()
            try:
                data = self._load_data()
                update_func(data["sessions"])
                self._save_data(data)
            finally:
                self._release_lock(lock)

    def load(self) -> dict[SessionKey, dict[str, Any]]:
        with self._thread_lock:
            sessions = self._load_data()["sessions"]
        restored = {}
        for raw_key, partial in sessions.items():
            try:
                key = SessionKey.parse(raw_key)
            except ValueError:
                logger.warning(f"Skipping stored config with invalid key {raw_key!r}")
                continue
            if isinstance(partial, dict):
                restored[key] = partial
        return restored

    def save(self, key: SessionKey, config: SessionConfig):
        payload = config.model_dump()

        def update(sessions):
            sessions[str(key)] = payload

        self._update(update)

    def delete(self, key: SessionKey):
        def update(sessions):
            sessions.pop(str(key), None)

        self._update(update)
