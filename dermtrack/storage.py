"""
DermTrack - Persistence
Key-value durable stores and the adapter that saves and rehydrates the session snapshot.
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, TypeAdapter, ValidationError

from dermtrack.config import Config
from dermtrack.schemas import Patient, User

logger = logging.getLogger(__name__)


# ============================================================================
# Almacenes clave-valor
# ============================================================================

class KeyValueStore:
    """Durable string store: get(key) -> str | None, set(key, str)"""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonFileStore(KeyValueStore):
    """All keys live in a single JSON file, rewritten on every set"""

    def __init__(self, path: Path = Config.STORE_PATH):
        self.path = Path(path)

    def _load_db(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _save_db(self, data: Dict[str, str]):
        # Se escribe a un temporal en el mismo directorio y se reemplaza de golpe
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._load_db().get(key)

    def set(self, key: str, value: str) -> None:
        try:
            db = self._load_db()
        except (ValueError, OSError) as e:
            logger.warning(f"Store file {self.path} is unreadable, starting from an empty store: {e}")
            db = {}
        if not isinstance(db, dict):
            logger.warning(f"Store file {self.path} does not hold an object, starting from an empty store")
            db = {}
        db[key] = value
        self._save_db(db)


# ============================================================================
# Adaptador de persistencia
# ============================================================================

_TYPED_KEYS = {
    Config.USERS_KEY: TypeAdapter(List[User]),
    Config.PATIENTS_KEY: TypeAdapter(List[Patient]),
}


def strip_binary_handles(patients: List[Patient]) -> List[Patient]:
    """Copies of the patients whose images no longer carry in-memory bytes"""
    return [
        patient.model_copy(update={
            "lesion_images": [img.model_copy(update={"binary_handle": None}) for img in patient.lesion_images]
        })
        for patient in patients
    ]


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    return value


class PersistenceAdapter:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def save(self, key: str, value: Any) -> None:
        """
        Serializes `value` under `key`, overwriting the previous value.

        Patient collections lose their binary handles first. Failures are
        logged and swallowed: the in-memory session stays authoritative.
        """
        try:
            if key == Config.PATIENTS_KEY:
                value = strip_binary_handles(value)
            serialized = json.dumps(_to_jsonable(value))
            self.store.set(key, serialized)
        except (TypeError, ValueError, AttributeError, OSError) as e:
            logger.warning(f"Error saving state for key {key!r}: {e}")

    def load(self, key: str, fallback: Any) -> Any:
        """
        Reads the value under `key`, or `fallback` if absent or unreadable.

        Users and patients are validated into their models; image timestamps,
        stored as ISO strings, come back as aware datetimes.
        """
        try:
            serialized = self.store.get(key)
            if serialized is None:
                return fallback
            raw = json.loads(serialized)
            if key == Config.PATIENTS_KEY:
                raw = _rehydrate_timestamps(raw)
            adapter = _TYPED_KEYS.get(key)
            return adapter.validate_python(raw) if adapter else raw
        except (ValueError, TypeError, KeyError, AttributeError, OSError, ValidationError) as e:
            logger.warning(f"Error loading state for key {key!r}: {e}")
            return fallback


def _rehydrate_timestamps(raw: Any) -> Any:
    if not isinstance(raw, list):
        return raw
    for patient in raw:
        for img in patient.get("lesionImages") or []:
            if isinstance(img.get("timestamp"), str):
                img["timestamp"] = datetime.fromisoformat(img["timestamp"].replace("Z", "+00:00"))
    return raw
