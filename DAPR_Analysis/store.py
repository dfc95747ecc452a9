"""
Persistence for sketches, their detections and their current DAPR score.

Each sketch's record, detection set and score live in one state object that
is replaced as a whole, so readers never see detections from one analysis
paired with the score of another.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sketch_kit.types import Detection

from .errors import DetectionNotFoundError, SketchNotFoundError
from .scoring import DAPRScore

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


@dataclass(frozen=True)
class SketchRecord:
    sketch_id: int
    image_path: str
    title: str = "Untitled"
    analyzed: bool = False
    created_at: str = ""
    participant_age: Optional[int] = None
    participant_gender: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sketch_id": self.sketch_id,
            "image_path": self.image_path,
            "title": self.title,
            "analyzed": self.analyzed,
            "created_at": self.created_at,
            "participant_age": self.participant_age,
            "participant_gender": self.participant_gender,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SketchRecord":
        return cls(
            sketch_id=int(payload["sketch_id"]),
            image_path=str(payload["image_path"]),
            title=str(payload.get("title") or "Untitled"),
            analyzed=bool(payload.get("analyzed", False)),
            created_at=str(payload.get("created_at", "")),
            participant_age=payload.get("participant_age"),
            participant_gender=payload.get("participant_gender"),
        )


@dataclass(frozen=True)
class StoredDetection:
    detection_id: int
    sketch_id: int
    detection: Detection
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        payload = self.detection.to_dict()
        payload.update({"detection_id": self.detection_id, "sketch_id": self.sketch_id, "created_at": self.created_at})
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "StoredDetection":
        return cls(
            detection_id=int(payload["detection_id"]),
            sketch_id=int(payload["sketch_id"]),
            detection=Detection.from_dict(payload),
            created_at=str(payload.get("created_at", "")),
        )


@dataclass(frozen=True)
class SketchState:
    record: SketchRecord
    detections: Tuple[StoredDetection, ...] = ()
    score: Optional[DAPRScore] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record.to_dict(),
            "detections": [d.to_dict() for d in self.detections],
            "score": None if self.score is None else self.score.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SketchState":
        score = payload.get("score")
        return cls(
            record=SketchRecord.from_dict(payload["record"]),
            detections=tuple(StoredDetection.from_dict(d) for d in payload.get("detections", [])),
            score=None if score is None else DAPRScore.from_dict(score),
        )


class SketchStore(ABC):
    """
    Operations shared by every backend; subclasses only read/write whole
    SketchState objects and hand out ids.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    @abstractmethod
    def _read(self, sketch_id: int) -> Optional[SketchState]:
        ...

    @abstractmethod
    def _write(self, state: SketchState) -> None:
        ...

    @abstractmethod
    def _remove(self, sketch_id: int) -> None:
        ...

    @abstractmethod
    def _ids(self) -> List[int]:
        ...

    @abstractmethod
    def _next_id(self, kind: str) -> int:
        ...

    def _state(self, sketch_id: int) -> SketchState:
        state = self._read(int(sketch_id))
        if state is None:
            raise SketchNotFoundError(f"Sketch {sketch_id} not found")
        return state

    def _stamp(self, sketch_id: int, detections: Iterable[Detection]) -> Tuple[StoredDetection, ...]:
        now = _now_iso()
        return tuple(
            StoredDetection(detection_id=self._next_id("detection"), sketch_id=sketch_id, detection=d, created_at=now)
            for d in detections
        )

    # Sketches

    def create_sketch(
        self,
        image_path: str,
        *,
        title: Optional[str] = None,
        participant_age: Optional[int] = None,
        participant_gender: Optional[str] = None,
    ) -> SketchRecord:
        with self._lock:
            record = SketchRecord(
                sketch_id=self._next_id("sketch"),
                image_path=str(image_path),
                title=title or "Untitled",
                created_at=_now_iso(),
                participant_age=participant_age,
                participant_gender=participant_gender,
            )
            self._write(SketchState(record=record))
            return record

    def get_sketch(self, sketch_id: int) -> SketchRecord:
        with self._lock:
            return self._state(sketch_id).record

    def find_sketch(self, sketch_id: int) -> Optional[SketchRecord]:
        with self._lock:
            state = self._read(int(sketch_id))
            return None if state is None else state.record

    def list_sketches(self) -> List[SketchRecord]:
        with self._lock:
            out = []
            for sid in sorted(self._ids()):
                state = self._read(sid)
                if state is not None:
                    out.append(state.record)
            return out

    def delete_sketch(self, sketch_id: int) -> None:
        with self._lock:
            if self._read(int(sketch_id)) is None:
                return
            self._remove(int(sketch_id))

    # Detections

    def save_detections(self, sketch_id: int, detections: Iterable[Detection]) -> Tuple[StoredDetection, ...]:
        """
        Replace the whole detection set and mark the sketch analyzed.
        """

        with self._lock:
            state = self._state(sketch_id)
            stored = self._stamp(state.record.sketch_id, detections)
            self._write(replace(state, record=replace(state.record, analyzed=True), detections=stored))
            return stored

    def get_detections(self, sketch_id: int) -> Tuple[StoredDetection, ...]:
        with self._lock:
            return self._state(sketch_id).detections

    def add_detection(self, sketch_id: int, detection: Detection) -> StoredDetection:
        with self._lock:
            state = self._state(sketch_id)
            (stored,) = self._stamp(state.record.sketch_id, [detection])
            self._write(replace(state, detections=state.detections + (stored,)))
            return stored

    def delete_detection(self, sketch_id: int, detection_id: int) -> None:
        with self._lock:
            state = self._state(sketch_id)
            kept = tuple(d for d in state.detections if d.detection_id != int(detection_id))
            if len(kept) == len(state.detections):
                raise DetectionNotFoundError(f"Detection {detection_id} not found on sketch {sketch_id}")
            self._write(replace(state, detections=kept))

    # Scores

    def save_score(self, sketch_id: int, score: DAPRScore) -> None:
        with self._lock:
            state = self._state(sketch_id)
            self._write(replace(state, score=score))

    def get_score(self, sketch_id: int) -> Optional[DAPRScore]:
        with self._lock:
            return self._state(sketch_id).score

    def save_analysis(
        self,
        sketch_id: int,
        detections: Iterable[Detection],
        score_fn: Callable[[Sequence[Detection]], DAPRScore],
    ) -> Tuple[Tuple[StoredDetection, ...], DAPRScore]:
        """
        Replace the detection set and store the score computed from the
        stamped set, in a single write.
        """

        with self._lock:
            state = self._state(sketch_id)
            stored = self._stamp(state.record.sketch_id, detections)
            score = score_fn([d.detection for d in stored])
            self._write(
                replace(state, record=replace(state.record, analyzed=True), detections=stored, score=score)
            )
            return stored, score

    def apply_edit(
        self,
        sketch_id: int,
        score_fn: Callable[[Sequence[Detection]], DAPRScore],
        *,
        add: Iterable[Detection] = (),
        remove: Iterable[int] = (),
    ) -> Tuple[Tuple[StoredDetection, ...], DAPRScore]:
        """
        Remove/add detections and replace the score computed from the
        resulting set, all in one write. With no edits this is a rescore.
        """

        with self._lock:
            state = self._state(sketch_id)
            remove_ids = {int(r) for r in remove}
            missing = remove_ids - {d.detection_id for d in state.detections}
            if missing:
                raise DetectionNotFoundError(f"Detection(s) {sorted(missing)} not found on sketch {sketch_id}")
            kept = tuple(d for d in state.detections if d.detection_id not in remove_ids)
            kept = kept + self._stamp(state.record.sketch_id, add)
            score = score_fn([d.detection for d in kept])
            self._write(replace(state, detections=kept, score=score))
            return kept, score

    def all_scores(self) -> Dict[int, DAPRScore]:
        with self._lock:
            out: Dict[int, DAPRScore] = {}
            for sid in sorted(self._ids()):
                state = self._read(sid)
                if state is not None and state.score is not None:
                    out[sid] = state.score
            return out


class MemorySketchStore(SketchStore):
    def __init__(self) -> None:
        super().__init__()
        self._states: Dict[int, SketchState] = {}
        self._counters: Dict[str, int] = {}

    def _read(self, sketch_id: int) -> Optional[SketchState]:
        return self._states.get(sketch_id)

    def _write(self, state: SketchState) -> None:
        self._states[state.record.sketch_id] = state

    def _remove(self, sketch_id: int) -> None:
        self._states.pop(sketch_id, None)

    def _ids(self) -> List[int]:
        return list(self._states.keys())

    def _next_id(self, kind: str) -> int:
        self._counters[kind] = self._counters.get(kind, 0) + 1
        return self._counters[kind]


def _atomic_write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class JsonSketchStore(SketchStore):
    """
    One JSON file per sketch under `root/sketches/`, replaced atomically.
    """

    def __init__(self, root: Path) -> None:
        super().__init__()
        self.root = Path(root)
        self._sketch_dir = self.root / "sketches"
        self._counters_path = self.root / "counters.json"
        self._sketch_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, sketch_id: int) -> Path:
        return self._sketch_dir / f"sketch_{int(sketch_id):06d}.json"

    def _read(self, sketch_id: int) -> Optional[SketchState]:
        path = self._path(sketch_id)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Corrupt sketch state file: {path}") from exc
        return SketchState.from_dict(payload)

    def _write(self, state: SketchState) -> None:
        _atomic_write_json(self._path(state.record.sketch_id), state.to_dict())

    def _remove(self, sketch_id: int) -> None:
        path = self._path(sketch_id)
        if path.exists():
            path.unlink()
            logger.info("Deleted sketch state %s", path)

    def _ids(self) -> List[int]:
        ids: List[int] = []
        for p in self._sketch_dir.glob("sketch_*.json"):
            suffix = p.stem[len("sketch_") :]
            if suffix.isdigit():
                ids.append(int(suffix))
        return ids

    def _next_id(self, kind: str) -> int:
        counters: Dict[str, int] = {}
        if self._counters_path.exists():
            counters = json.loads(self._counters_path.read_text(encoding="utf-8"))
        counters[kind] = int(counters.get(kind, 0)) + 1
        _atomic_write_json(self._counters_path, counters)
        return counters[kind]
