"""Durable string key-value backends (localStorage equivalent)."""

from __future__ import annotations

import os
import re
import tempfile

from arcadehub.errors import StorageQuotaError

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class MemoryKeyValue:
    """Process-local store. Gone when the process exits."""

    def __init__(self, quota_bytes: int = 0):
        self.quota_bytes = int(quota_bytes)
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._check_quota(key, value)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)

    def used_bytes(self) -> int:
        return sum(len(k) + len(v.encode("utf-8")) for k, v in self._items.items())

    def _check_quota(self, key: str, value: str) -> None:
        if self.quota_bytes <= 0:
            return
        old = self.get_item(key)
        used = self.used_bytes()
        if old is not None:
            used -= len(key) + len(old.encode("utf-8"))
        if used + len(key) + len(value.encode("utf-8")) > self.quota_bytes:
            raise StorageQuotaError(f"storage quota exceeded writing {key!r}")


class FileKeyValue(MemoryKeyValue):
    """One file per key under `directory`; writes replace the file atomically."""

    def __init__(self, directory: str, quota_bytes: int = 0):
        super().__init__(quota_bytes)
        self.directory = os.path.abspath(directory)
        os.makedirs(self.directory, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, _SAFE_KEY.sub("_", key) + ".txt")

    def get_item(self, key: str) -> str | None:
        try:
            with open(self._path(key), "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def set_item(self, key: str, value: str) -> None:
        self._check_quota(key, value)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, self._path(key))
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def remove_item(self, key: str) -> None:
        try:
            os.unlink(self._path(key))
        except FileNotFoundError:
            pass

    def keys(self) -> list[str]:
        return [n[: -len(".txt")] for n in os.listdir(self.directory) if n.endswith(".txt")]

    def used_bytes(self) -> int:
        total = 0
        for name in os.listdir(self.directory):
            if name.endswith(".txt"):
                total += len(name) - len(".txt") + os.path.getsize(os.path.join(self.directory, name))
        return total


def open_key_value(data_dir: str, quota_bytes: int = 0) -> MemoryKeyValue:
    if data_dir:
        return FileKeyValue(data_dir, quota_bytes=quota_bytes)
    return MemoryKeyValue(quota_bytes=quota_bytes)
