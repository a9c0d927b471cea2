"""Persistence boundary for feedback, learning events and patch events.

The engine computes first and persists afterwards. Sink failures surface as
PersistenceError; the callers of the hooks log and record them in a
PersistenceReport instead of aborting the pass.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from triage.engine.models import CycleResult
from triage.errors import PersistenceError

logger = logging.getLogger(__name__)


class FeedbackSink(ABC):
    """Durable destination for engine records"""

    @abstractmethod
    def record_learning_event(self, event: dict[str, Any]) -> None:
        """Store one learning event"""
        pass

    @abstractmethod
    def record_feedback(self, record: dict[str, Any]) -> None:
        """Store one feedback log record"""
        pass

    @abstractmethod
    def record_patch_event(self, event: dict[str, Any]) -> None:
        """Store one patch lifecycle event"""
        pass


@dataclass
class PersistenceFailure:
    record_id: str
    error: str


@dataclass
class PersistenceReport:
    """Outcome of a best-effort persistence hook"""
    attempted: int = 0
    written: int = 0
    failures: list[PersistenceFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class JsonlFeedbackSink(FeedbackSink):
    """Appends records to JSONL files in a data directory"""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.learning_log = self.data_dir / "learning_events.jsonl"
        self.feedback_log = self.data_dir / "feedback_log.jsonl"
        self.patch_log = self.data_dir / "patch_events.jsonl"
        self.cycles_log = self.data_dir / "cycles.jsonl"

    def record_learning_event(self, event: dict[str, Any]) -> None:
        self._append(self.learning_log, event)

    def record_feedback(self, record: dict[str, Any]) -> None:
        self._append(self.feedback_log, record)

    def record_patch_event(self, event: dict[str, Any]) -> None:
        self._append(self.patch_log, event)

    def save_cycle_result(self, result: CycleResult) -> None:
        """Append a cycle result to the history log"""
        self._append(self.cycles_log, result.to_dict())

    def load_cycle_results(self, limit: int | None = None) -> list[CycleResult]:
        """Load stored cycle results, oldest first"""
        try:
            results = [CycleResult.from_dict(data) for data in self._read(self.cycles_log)]
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Invalid cycle record in {self.cycles_log.name}: {e}") from e
        if limit is not None:
            return results[-limit:]
        return results

    def read_learning_events(self) -> list[dict]:
        return self._read(self.learning_log)

    def read_feedback(self) -> list[dict]:
        return self._read(self.feedback_log)

    def read_patch_events(self) -> list[dict]:
        return self._read(self.patch_log)

    def _append(self, path: Path, data: dict[str, Any]) -> None:
        try:
            with open(path, 'a') as f:
                json.dump(data, f, default=str)
                f.write('\n')
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Cannot write to {path.name}: {e}") from e

    def _read(self, path: Path) -> list[dict]:
        if not path.exists():
            return []

        records = []
        try:
            with open(path, 'r') as f:
                for line_number, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    records.append(json.loads(line))
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Malformed record in {path.name} line {line_number}: {e}") from e
        except OSError as e:
            raise PersistenceError(f"Cannot read {path.name}: {e}") from e
        return records
