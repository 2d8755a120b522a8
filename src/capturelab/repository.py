"""
Persisted captures and the comparison selection.

CaptureRepository keeps saved captures most-recent-first on top of a
persistence store and maintains the ordered set of captures selected for
comparison. Deleting a capture always removes it from the selection.
"""

import json
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .errors import CaptureLabError, CaptureNotFound
from .session import Capture, CaptureSession

logger = logging.getLogger(__name__)


def new_capture_id() -> str:
    return uuid.uuid4().hex[:12]


class CaptureStore:
    """Common behaviour of the persistence stores."""

    def __init__(self):
        self._captures: Dict[str, Capture] = {}

    def _assign_id(self, capture: Capture) -> str:
        capture_id = capture.id
        while not capture_id or capture_id in self._captures:
            capture_id = new_capture_id()
        capture.id = capture_id
        return capture_id

    def save_capture(self, capture: Capture) -> str:
        """Store a capture, assigning it an id when it has none (or a taken one)."""
        capture = capture.copy()
        capture_id = self._assign_id(capture)
        self._write(capture)
        self._captures[capture_id] = capture
        return capture_id

    def update_capture(self, capture: Capture):
        if capture.id not in self._captures:
            raise CaptureNotFound(capture.id)
        capture = capture.copy()
        self._write(capture)
        self._captures[capture.id] = capture

    def get_capture(self, capture_id: str) -> Optional[Capture]:
        return self._captures.get(capture_id)

    def get_all_captures(self) -> List[Capture]:
        """All captures, most recent first (ties: last saved first)."""
        newest_saved_first = list(reversed(list(self._captures.values())))
        return sorted(newest_saved_first, key=lambda c: c.timestamp, reverse=True)

    def get_captures_by_channel(self) -> Dict[str, List[Capture]]:
        grouped: Dict[str, List[Capture]] = {}
        for capture in self.get_all_captures():
            grouped.setdefault(capture.output_channel, []).append(capture)
        return grouped

    def delete_capture(self, capture_id: str):
        if capture_id not in self._captures:
            raise CaptureNotFound(capture_id)
        self._remove(capture_id)
        del self._captures[capture_id]

    def _write(self, capture: Capture):
        pass

    def _remove(self, capture_id: str):
        pass


class MemoryCaptureStore(CaptureStore):
    """Captures held in process memory only."""
    pass


class JsonCaptureStore(CaptureStore):
    """
    One JSON file per capture in a directory.

    Files are written to a temporary name and then replaced so a crash never
    leaves a half-written capture. Unreadable files are skipped on load.
    """

    def __init__(self, directory: Union[str, Path]):
        super().__init__()
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self._load()

    def _path(self, capture_id: str) -> Path:
        return self.directory / f"{capture_id}.json"

    def _load(self):
        for path in sorted(self.directory.glob("*.json")):
            try:
                with path.open("r") as f:
                    capture = Capture.from_dict(json.load(f))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable capture file {path}: {e}")
                continue
            if capture.id != path.stem:
                logger.warning(f"Capture file {path} holds id {capture.id}, using file name")
                capture.id = path.stem
            self._captures[capture.id] = capture
        logger.info(f"Loaded {len(self._captures)} captures from {self.directory}")

    def _write(self, capture: Capture):
        path = self._path(capture.id)
        tmp = path.with_suffix(".tmp")
        with tmp.open("w") as f:
            json.dump(capture.to_dict(), f, indent=2)
        tmp.replace(path)

    def _remove(self, capture_id: str):
        try:
            os.unlink(self._path(capture_id))
        except FileNotFoundError:
            logger.warning(f"Capture file for {capture_id} was already gone")


class CaptureRepository:
    """Saved captures plus the comparison selection."""

    def __init__(self, store: Optional[CaptureStore] = None):
        self.store = store if store is not None else MemoryCaptureStore()
        self._selection: List[str] = []
        # Guards the store and the selection against concurrent request threads
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self.store.get_all_captures())

    def __contains__(self, capture_id: str) -> bool:
        return self.get(capture_id) is not None

    def save(self, source: Union[CaptureSession, Capture], name: Optional[str] = None) -> str:
        """
        Persist the current session capture, or a given capture, and return its id.

        Raises:
            InsufficientData: If a session without captured data is given
        """
        if isinstance(source, CaptureSession):
            capture = source.to_capture(name)
        else:
            capture = source.copy()
            if name:
                capture.name = name
        with self._lock:
            capture_id = self.store.save_capture(capture)
        logger.info(f"Saved capture {capture_id}: {capture.name}")
        return capture_id

    def get(self, capture_id: str) -> Optional[Capture]:
        with self._lock:
            return self.store.get_capture(capture_id)

    def require(self, capture_id: str) -> Capture:
        capture = self.get(capture_id)
        if capture is None:
            raise CaptureNotFound(capture_id)
        return capture

    def all(self) -> List[Capture]:
        with self._lock:
            return self.store.get_all_captures()

    def by_channel(self) -> Dict[str, List[Capture]]:
        with self._lock:
            return self.store.get_captures_by_channel()

    def latest_for_channel(self, output_channel: str) -> Optional[Capture]:
        captures = self.by_channel().get(output_channel)
        return captures[0] if captures else None

    def rename(self, capture_id: str, name: str) -> Capture:
        name = (name or "").strip()
        if not name:
            raise ValueError("Capture name must not be empty")
        with self._lock:
            capture = self.require(capture_id).copy()
            capture.name = name
            self.store.update_capture(capture)
            renamed = self.require(capture_id)
        logger.info(f"Renamed capture {capture_id} to {name}")
        return renamed

    def delete(self, capture_id: str):
        """
        Raises:
            CaptureNotFound: If the id is unknown
        """
        with self._lock:
            self.store.delete_capture(capture_id)
            if capture_id in self._selection:
                self._selection.remove(capture_id)
        logger.info(f"Deleted capture {capture_id}")

    def delete_many(self, capture_ids: Iterable[str]) -> Dict:
        """
        Delete each id independently. A failure is recorded and the rest
        still get deleted.
        """
        deleted = []
        failed = {}
        with self._lock:
            for capture_id in capture_ids:
                try:
                    self.delete(capture_id)
                    deleted.append(capture_id)
                except (CaptureLabError, OSError) as e:
                    logger.error(f"Failed to delete capture {capture_id}: {e}")
                    failed[capture_id] = str(e)
        return {"deleted": deleted, "failed": failed}

    @property
    def selection(self) -> List[str]:
        with self._lock:
            return list(self._selection)

    def selected_captures(self) -> List[Capture]:
        with self._lock:
            return [c for c in (self.get(i) for i in self._selection) if c is not None]

    def select(self, capture_id: str):
        with self._lock:
            self.require(capture_id)
            if capture_id not in self._selection:
                self._selection.append(capture_id)

    def deselect(self, capture_id: str):
        with self._lock:
            if capture_id in self._selection:
                self._selection.remove(capture_id)

    def select_all(self):
        with self._lock:
            self._selection = [c.id for c in self.all()]

    def clear_selection(self):
        with self._lock:
            self._selection = []
