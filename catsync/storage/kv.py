# catsync Key/Value Storage
# Persistence port for sessions and queues, with memory and YAML file adapters

from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import yaml


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal string key/value contract used for session persistence."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """In-process key/value store."""

    def __init__(self, data: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(data or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with a prefix."""
        return sorted(key for key in self._data if key.startswith(prefix))


class YamlFileKeyValueStore:
    """
    Key/value store backed by a single YAML file.

    The whole mapping is rewritten on every change, so a checkpoint
    survives process interruption as soon as ``set`` returns.
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize file store.

        Args:
            path: Path to store file. Defaults to ~/.config/catsync/sessions.yaml
        """
        if path is None:
            path = Path.home() / ".config" / "catsync" / "sessions.yaml"
        self.path = Path(path).expanduser()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}

        with open(self.path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            return {}
        return {str(key): str(value) for key, value in data.items()}

    def _save(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=True, allow_unicode=True)
        tmp_path.replace(self.path)

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with a prefix."""
        return sorted(key for key in self._load() if key.startswith(prefix))
