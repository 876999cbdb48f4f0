import json
import os
from pathlib import Path
from typing import Dict, Optional, Protocol
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.exceptions import StorageError
from chat_core.infrastructure.logging.logger import logger


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class JsonKeyValueStore(KeyValueStore):
    """扁平的字符串键值存储，整体保存在一个 JSON 文件里。"""

    def __init__(self, path: str | Path | None = None):
        self._path = Path(path or Path(settings.storage_root) / settings.state_file).resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._data: Optional[Dict[str, str]] = None

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = dict(self._load())
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key not in data:
            return
        data = {k: v for k, v in data.items() if k != key}
        self._write(data)

    def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data
        if not self._path.exists():
            self._data = {}
            return self._data
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(code="STORE_READ_ERROR", message=str(e))
        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            logger.warning(f"Corrupt key/value file {self._path}, starting empty: {e}")
            data = {}
        if not isinstance(data, dict):
            logger.warning(f"Key/value file {self._path} is not a mapping, starting empty")
            data = {}
        self._data = {str(k): v for k, v in data.items() if isinstance(v, str)}
        return self._data

    def _write(self, data: Dict[str, str]) -> None:
        tmp_path = self._path.parent / f"{self._path.stem}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e))
        self._data = data
