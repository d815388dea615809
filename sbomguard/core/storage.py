"""Persistence backends behind the analysis store."""
import json
import os
import threading
from abc import ABC
from abc import abstractmethod
from collections.abc import Iterator
from pathlib import Path

import structlog
from pydantic import ValidationError

from sbomguard.models.analysis import Analysis

logger = structlog.get_logger('storage')


class AnalysisBackend(ABC):
    """Opaque document store keyed by analysis id."""

    @abstractmethod
    def put(self, analysis: Analysis) -> None:
        ...

    @abstractmethod
    def get(self, analysis_id: str) -> Analysis | None:
        ...

    @abstractmethod
    def delete(self, analysis_id: str) -> bool:
        ...

    @abstractmethod
    def scan(self) -> Iterator[Analysis]:
        ...


class MemoryBackend(AnalysisBackend):
    """Keeps deep copies so callers never share mutable state with the store."""

    def __init__(self):
        self._records: dict[str, Analysis] = {}
        self._lock = threading.Lock()

    def put(self, analysis: Analysis) -> None:
        with self._lock:
            self._records[analysis.id] = analysis.model_copy(deep=True)

    def get(self, analysis_id: str) -> Analysis | None:
        with self._lock:
            record = self._records.get(analysis_id)
            return record.model_copy(deep=True) if record else None

    def delete(self, analysis_id: str) -> bool:
        with self._lock:
            return self._records.pop(analysis_id, None) is not None

    def scan(self) -> Iterator[Analysis]:
        with self._lock:
            records = [r.model_copy(deep=True) for r in self._records.values()]
        yield from records


class JsonlBackend(MemoryBackend):
    """
    Append-only JSONL ledger. Every save appends the full record; on load
    the last line for an id wins. Deletions are written as tombstones.
    """

    def __init__(self, filepath: str | Path):
        super().__init__()
        self.filepath = Path(filepath)
        os.makedirs(self.filepath.parent, exist_ok=True)
        self._load_existing()

    def _load_existing(self) -> None:
        if not self.filepath.exists():
            return

        count = 0
        with open(self.filepath, encoding='utf-8') as f:
            for number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                if line.startswith('{"deleted":'):
                    try:
                        self._records.pop(json.loads(line)['deleted'], None)
                    except (json.JSONDecodeError, KeyError, TypeError) as e:
                        logger.warning(
                            'Skipping unreadable tombstone',
                            path=str(self.filepath), line=number, error=str(e),
                        )
                    continue
                try:
                    analysis = Analysis.model_validate_json(line)
                except ValidationError as e:
                    logger.warning(
                        'Skipping unreadable record',
                        path=str(self.filepath), line=number, error=str(e),
                    )
                    continue
                self._records[analysis.id] = analysis
                count += 1
        logger.info(
            'Loaded persisted analyses',
            path=str(self.filepath), records=count, unique=len(self._records),
        )

    def _append(self, line: str) -> None:
        with open(self.filepath, 'a', encoding='utf-8') as f:
            f.write(line + '\n')
            f.flush()

    def put(self, analysis: Analysis) -> None:
        with self._lock:
            self._records[analysis.id] = analysis.model_copy(deep=True)
            self._append(analysis.model_dump_json())

    def delete(self, analysis_id: str) -> bool:
        with self._lock:
            existed = self._records.pop(analysis_id, None) is not None
            if existed:
                self._append(json.dumps({'deleted': analysis_id}))
            return existed
