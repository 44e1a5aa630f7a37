"""
AreaStore interface for the durable cross-tick store.

The durable store is the nested key-value structure the host keeps between
ticks: one record per area (energy snapshot, role counts, priorities, backlog
summaries and their timestamps) plus the core's own plain-data snapshot. Writes
to it are expensive, so the cache batches them and calls ``write_areas`` at
most once per tick.

Two included implementations:
1. InMemoryAreaStore - Dict-based storage, counts writes (testing, embedding in a host)
2. JsonAreaStore - File-based storage, human-readable JSON (local runs, debugging)

Usage pattern:
    store = InMemoryAreaStore()  # or JsonAreaStore("colony_state")
    store.initialize()

    store.write_areas({"W1N1": {"energy_available": 300}})
    store.read_area("W1N1")

    store.close()
"""

import copy
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .config import Config
from .schemas import CoreSnapshot

AreaRecord = Dict[str, Any]


class AreaStore(ABC):
    """Abstract base class for the durable per-area store.

    Method categories:
    1. Lifecycle: initialize(), close()
    2. Area records: read_area(), write_areas()
    3. Core snapshot: load_snapshot(), save_snapshot()

    Implementations are synchronous: every operation completes before control
    returns to the host for the next tick.
    """

    @abstractmethod
    def initialize(self) -> None:
        """Prepare the backend (create directories, load files, etc.)."""

    @abstractmethod
    def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    def read_area(self, area_id: str) -> AreaRecord:
        """
        Return the stored record for an area.

        Args:
            area_id: Area identifier

        Returns:
            A copy of the stored record, or an empty dict if none exists
        """

    @abstractmethod
    def write_areas(self, records: Dict[str, AreaRecord]) -> None:
        """
        Merge a batch of area records into the store in one operation.

        Fields present in a record overwrite stored fields; absent fields are
        left untouched.

        Args:
            records: Mapping of area_id to the fields to write
        """

    @abstractmethod
    def load_snapshot(self) -> Optional[CoreSnapshot]:
        """Return the last saved core snapshot, or None."""

    @abstractmethod
    def save_snapshot(self, snapshot: CoreSnapshot) -> None:
        """Persist the core snapshot for the next tick."""


class InMemoryAreaStore(AreaStore):
    """In-memory store using Python dicts (no files).

    Records are kept as plain JSON-compatible dicts so they look exactly like
    what a host-serialized store would hold. ``write_calls`` counts batched
    writes, which is the quantity the deferred write-back minimizes.
    """

    def __init__(self):
        self.areas: Dict[str, AreaRecord] = {}
        self.snapshot: Optional[Dict[str, Any]] = None
        self.write_calls = 0

    def initialize(self) -> None:
        pass

    def close(self) -> None:
        # Data is kept so callers can inspect it after a run
        pass

    def read_area(self, area_id: str) -> AreaRecord:
        return copy.deepcopy(self.areas.get(area_id, {}))

    def write_areas(self, records: Dict[str, AreaRecord]) -> None:
        if not records:
            return
        self.write_calls += 1
        for area_id, fields in records.items():
            self.areas.setdefault(area_id, {}).update(copy.deepcopy(fields))

    def load_snapshot(self) -> Optional[CoreSnapshot]:
        if self.snapshot is None:
            return None
        return CoreSnapshot.model_validate(self.snapshot)

    def save_snapshot(self, snapshot: CoreSnapshot) -> None:
        self.snapshot = snapshot.model_dump(mode="json")


class JsonAreaStore(AreaStore):
    """File-based store using JSON for human-readable state.

    Directory structure:
    ```
    {base_path}/
      areas.json        # {area_id: record}
      snapshot.json     # CoreSnapshot
    ```

    Area records are loaded once in ``initialize()`` and every ``write_areas``
    rewrites ``areas.json`` in a single file write. Transient ``OSError``s are
    retried a few times before propagating.
    """

    def __init__(self, base_path: Path | str | None = None, *, attempts: int = 3):
        self.base_path = Path(base_path) if base_path is not None else Config.STATE_DIR
        self.attempts = attempts
        self.areas: Dict[str, AreaRecord] = {}
        self.write_calls = 0

    @property
    def areas_path(self) -> Path:
        return self.base_path / "areas.json"

    @property
    def snapshot_path(self) -> Path:
        return self.base_path / "snapshot.json"

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception_type(OSError),
            stop=stop_after_attempt(self.attempts),
            wait=wait_fixed(0.05),
            reraise=True,
        )

    def _write_json(self, path: Path, payload: Any) -> None:
        text = json.dumps(payload, indent=2, sort_keys=True)
        for attempt in self._retrying():
            with attempt:
                path.write_text(text, "utf-8")

    def initialize(self) -> None:
        self.base_path.mkdir(parents=True, exist_ok=True)
        if self.areas_path.exists():
            self.areas = json.loads(self.areas_path.read_text("utf-8"))

    def close(self) -> None:
        return None

    def read_area(self, area_id: str) -> AreaRecord:
        return copy.deepcopy(self.areas.get(area_id, {}))

    def write_areas(self, records: Dict[str, AreaRecord]) -> None:
        if not records:
            return
        for area_id, fields in records.items():
            self.areas.setdefault(area_id, {}).update(copy.deepcopy(fields))
        self._write_json(self.areas_path, self.areas)
        self.write_calls += 1

    def load_snapshot(self) -> Optional[CoreSnapshot]:
        if not self.snapshot_path.exists():
            return None
        return CoreSnapshot.model_validate_json(self.snapshot_path.read_text("utf-8"))

    def save_snapshot(self, snapshot: CoreSnapshot) -> None:
        self._write_json(self.snapshot_path, snapshot.model_dump(mode="json"))
