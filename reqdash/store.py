"""
ReqDash Saved Requests
======================
Persistence for named request descriptors. The core never touches this
module; the web layer and the CLI use it on behalf of the user.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from reqdash.config import REQUESTS_DIR
from reqdash.core.models import RequestDescriptor

logger = logging.getLogger(__name__)


# ── Record ───────────────────────────────────────────────────────────────────

@dataclass
class SavedRequest:
    """A named request kept for later reuse."""
    id: str
    name: str
    request: RequestDescriptor
    created: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "request": self.request.to_dict(),
            "created": self.created,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SavedRequest":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            request=RequestDescriptor.from_dict(data.get("request") or {}),
            created=data.get("created", 0),
        )


# ── Interface ────────────────────────────────────────────────────────────────

class RequestStore(ABC):
    """Repository of saved requests keyed by an opaque id."""

    def __init__(self):
        self._id_lock = threading.Lock()
        self._last_id = 0

    def new_id(self) -> str:
        """Millisecond timestamp, bumped when two saves land in the same ms."""
        with self._id_lock:
            ts = max(int(time.time() * 1000), self._last_id + 1)
            self._last_id = ts
            return str(ts)

    @abstractmethod
    def create(self, name: str, request: RequestDescriptor) -> SavedRequest:
        ...

    @abstractmethod
    def list(self) -> List[SavedRequest]:
        """All saved requests, newest first."""

    @abstractmethod
    def get(self, request_id: str) -> Optional[SavedRequest]:
        ...

    @abstractmethod
    def delete(self, request_id: str) -> bool:
        ...


# ── In-Memory ────────────────────────────────────────────────────────────────

class MemoryRequestStore(RequestStore):
    """Process-local store; contents vanish with the process."""

    def __init__(self):
        super().__init__()
        self._lock = threading.Lock()
        self._items: Dict[str, SavedRequest] = {}

    def create(self, name: str, request: RequestDescriptor) -> SavedRequest:
        saved = SavedRequest(id=self.new_id(), name=name or request.url, request=request)
        with self._lock:
            self._items[saved.id] = saved
        return saved

    def list(self) -> List[SavedRequest]:
        with self._lock:
            items = list(self._items.values())
        items.sort(key=lambda s: (s.created, s.id), reverse=True)
        return items

    def get(self, request_id: str) -> Optional[SavedRequest]:
        with self._lock:
            return self._items.get(request_id)

    def delete(self, request_id: str) -> bool:
        with self._lock:
            return self._items.pop(request_id, None) is not None


# ── JSON Files ───────────────────────────────────────────────────────────────

class JsonFileRequestStore(RequestStore):
    """One JSON document per saved request under ``directory``."""

    def __init__(self, directory: Optional[Path] = None):
        super().__init__()
        self.directory = Path(directory) if directory else REQUESTS_DIR
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, request_id: str) -> Optional[Path]:
        # Ids are generated digits; anything else cannot name a record
        if not request_id or not request_id.isdigit():
            return None
        return self.directory / f"{request_id}.json"

    def create(self, name: str, request: RequestDescriptor) -> SavedRequest:
        saved = SavedRequest(id=self.new_id(), name=name or request.url, request=request)
        self.directory.mkdir(parents=True, exist_ok=True)
        with open(self.directory / f"{saved.id}.json", "w") as f:
            json.dump(saved.to_dict(), f, indent=2, default=str)
        logger.info(f"Saved request {saved.id} ({saved.name})")
        return saved

    def list(self) -> List[SavedRequest]:
        items: List[SavedRequest] = []
        if not self.directory.exists():
            return items

        for f in self.directory.glob("*.json"):
            try:
                with open(f) as fh:
                    data = json.load(fh)
                data.setdefault("id", f.stem)
                items.append(SavedRequest.from_dict(data))
            except (json.JSONDecodeError, IOError, AttributeError) as e:
                logger.warning(f"Skipping unreadable saved request {f.name}: {e}")
                continue

        items.sort(key=lambda s: (s.created, s.id), reverse=True)
        return items

    def get(self, request_id: str) -> Optional[SavedRequest]:
        path = self._path(request_id)
        if path is None or not path.exists():
            return None
        try:
            with open(path) as f:
                return SavedRequest.from_dict(json.load(f))
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Cannot read saved request {request_id}: {e}")
            return None

    def delete(self, request_id: str) -> bool:
        path = self._path(request_id)
        if path is not None and path.exists():
            path.unlink()
            logger.info(f"Deleted saved request {request_id}")
            return True
        return False
