import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List

from botpanel.local.errors import (FILESYSTEM_ERROR, INVALID_ENV_VAR, MISSING_FIELD, NOT_FOUND, InvalidInputError,
                                   IOFailureError, NotFoundError)

log = logging.getLogger(__name__)


class BotRegistry:
    """
    Durable record of every deployed bot and its environment overrides.

    The whole store lives in one JSON file of the form
    ``{"bots": {"<name>": {"env": {"KEY": "VALUE"}}}}``. Every mutation is a
    read-modify-write of the full file, serialized through a single lock so two
    concurrent edits can never lose each other's write.
    """

    def __init__(self, path: Path) -> None:
        """
        Initializes the registry.

        :param path: The path to the registry JSON file. Created on first write.
        """
        self.path = path
        self._lock = threading.Lock()

    #* --- Raw store access (callers hold the lock) ---
    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"bots": {}}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            corrupt_path = self.path.with_suffix(".corrupt")
            log.error(f"Registry file '{self.path}' is malformed ({e}). Moving it to '{corrupt_path}'.")
            self.path.replace(corrupt_path)
            return {"bots": {}}
        except OSError as e:
            raise IOFailureError(FILESYSTEM_ERROR, detail=f"Could not read registry: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("bots"), dict):
            log.warning(f"Registry file '{self.path}' has an unexpected layout. Starting empty.")
            return {"bots": {}}
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        """Atomically replaces the registry file."""
        temp_path = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with temp_path.open("w", encoding="utf-8") as f:
                json.dump(data, f, indent=4, sort_keys=True)
            temp_path.replace(self.path)
        except OSError as e:
            log.error(f"Failed to write registry file: {e}", exc_info=True)
            raise IOFailureError(FILESYSTEM_ERROR, detail=f"Could not write registry: {e}") from e
        finally:
            temp_path.unlink(missing_ok=True)

    @staticmethod
    def _record(data: Dict[str, Any], name: str) -> Dict[str, Any]:
        record = data["bots"].get(name)
        if record is None:
            raise NotFoundError(NOT_FOUND, name, f"Bot '{name}' is not registered.")
        record.setdefault("env", {})
        return record

    #* --- Queries ---
    def list_names(self) -> List[str]:
        with self._lock:
            return sorted(self._read()["bots"])

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._read()["bots"]

    def get_env(self, name: str) -> Dict[str, str]:
        """Returns a copy of the bot's persisted environment overrides."""
        with self._lock:
            return dict(self._record(self._read(), name)["env"])

    #* --- Mutations ---
    def register(self, name: str) -> bool:
        """
        Adds a bot to the registry, keeping the environment of an existing record.

        :return: True if the bot was newly added.
        """
        with self._lock:
            data = self._read()
            if name in data["bots"]:
                return False
            data["bots"][name] = {"env": {}}
            self._write(data)
        log.info(f"Registered bot '{name}'.")
        return True

    def remove(self, name: str) -> None:
        with self._lock:
            data = self._read()
            if data["bots"].pop(name, None) is None:
                raise NotFoundError(NOT_FOUND, name, f"Bot '{name}' is not registered.")
            self._write(data)
        log.info(f"Removed bot '{name}' from the registry.")

    def set_env_var(self, name: str, key: str, value: str) -> None:
        if not isinstance(key, str) or not key.strip():
            raise InvalidInputError(MISSING_FIELD, name, "An environment variable name is required.")
        if not isinstance(value, str):
            raise InvalidInputError(MISSING_FIELD, name, f"The value for '{key}' must be a string.")
        key = key.strip()
        # Names containing '=' or NUL cannot be passed to a child process.
        if "=" in key or "\0" in key:
            raise InvalidInputError(INVALID_ENV_VAR, name, f"'{key}' is not a valid environment variable name.")
        if "\0" in value:
            raise InvalidInputError(INVALID_ENV_VAR, name, f"The value for '{key}' contains a NUL character.")

        with self._lock:
            data = self._read()
            self._record(data, name)["env"][key] = value
            self._write(data)
        log.info(f"Set environment variable '{key}' for bot '{name}'.")

    def delete_env_var(self, name: str, key: str) -> None:
        with self._lock:
            data = self._read()
            env = self._record(data, name)["env"]
            if key not in env:
                raise NotFoundError(NOT_FOUND, name, f"Environment variable '{key}' is not set for '{name}'.")
            del env[key]
            self._write(data)
        log.info(f"Deleted environment variable '{key}' for bot '{name}'.")
