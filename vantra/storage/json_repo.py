from __future__ import annotations

import glob
import json
import logging
import shutil
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)


def _json_default(o: Any) -> Any:
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    return str(o)


class JsonRepository:
    """
    JSON list file keyed by one field. Used as the local copy of records the
    backend may later fail to serve (invoices for the PDF fallback).
    - rotating .bak copies (backup_keep)
    - no write when the content is unchanged
    - a corrupt file is set aside as .corrupt.json and read as empty
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        entity_name: str = "entity",
        key: str = "id",
        *,
        backup_enabled: bool = True,
        backup_keep: int = 5,
    ) -> None:
        self.filepath = Path(filepath)
        self.entity_name = entity_name
        self.key = key
        self._lock = threading.Lock()
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        if not self.filepath.exists():
            self._write_raw([])

    # ---------------- Low level I/O ---------------- #

    def _read_raw(self) -> List[Dict[str, Any]]:
        try:
            with self.filepath.open("r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, list) else []
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            backup = self.filepath.with_suffix(".corrupt.json")
            logger.warning("Corrupt %s store %s, moved to %s", self.entity_name, self.filepath, backup)
            try:
                shutil.copy2(self.filepath, backup)
            except OSError:
                logger.exception("Could not keep a copy of %s", self.filepath)
            return []

    def _rotate_backups(self) -> None:
        if not self.backup_enabled or self.backup_keep <= 0:
            return
        pattern = str(self.filepath.with_suffix(".*.bak.json"))
        files = sorted(glob.glob(pattern))
        if len(files) > self.backup_keep:
            for old in files[: len(files) - self.backup_keep]:
                Path(old).unlink(missing_ok=True)

    def _write_raw(self, data: Iterable[Mapping[str, Any]]) -> None:
        with self._lock:
            new_dump = json.dumps(list(data), ensure_ascii=False, indent=2, default=_json_default)

            if self.filepath.exists():
                try:
                    if self.filepath.read_text(encoding="utf-8") == new_dump:
                        return
                except OSError:
                    pass

            if self.backup_enabled and self.filepath.exists():
                ts = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
                shutil.copy2(self.filepath, self.filepath.with_suffix(f".{ts}.bak.json"))
                self._rotate_backups()

            self.filepath.write_text(new_dump, encoding="utf-8")

    @staticmethod
    def _to_dict(item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(item, BaseModel):
            return item.model_dump(mode="json")
        return dict(item)

    # ---------------- CRUD ---------------- #

    def list_all(self) -> List[Dict[str, Any]]:
        return self._read_raw()

    def get_by_id(self, obj_id: Any) -> Optional[Dict[str, Any]]:
        for it in self._read_raw():
            if str(it.get(self.key)) == str(obj_id):
                return it
        return None

    def add(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        record = self._to_dict(item)
        k = self.key
        if not record.get(k):
            raise ValueError(f"Cannot store {self.entity_name} without '{k}'")
        data = self._read_raw()
        if any(str(d.get(k)) == str(record[k]) for d in data):
            raise ValueError(f"{self.entity_name} with {k}={record[k]} already exists")
        data.append(record)
        self._write_raw(data)
        return record

    def upsert(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        record = self._to_dict(item)
        k = self.key
        data = self._read_raw()
        for idx, existing in enumerate(data):
            if str(existing.get(k)) == str(record.get(k)):
                data[idx] = {**existing, **record}
                self._write_raw(data)
                return data[idx]
        return self.add(record)

