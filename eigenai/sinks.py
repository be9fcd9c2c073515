"""
Verification sinks — where signed-response records go once they are built.

A sink stores records and hands back the ones still waiting to be submitted
to a third party (e.g. a competition's verification API). The gateway calls
adeliver() exactly once per signed response, which runs the sink off the
event loop; a failing sink is logged and never breaks the completion that
produced the record.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Union, runtime_checkable

from pydantic import ValidationError

from .models import VerificationRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class VerificationSink(Protocol):
    def record(self, record: VerificationRecord) -> None:
        ...

    def list_unsubmitted(self, limit: int = 10) -> List[VerificationRecord]:
        ...


def deliver(sink: Optional[VerificationSink], record: VerificationRecord) -> bool:
    """Hand one record to the sink. Returns False (and logs) if the sink failed."""
    if sink is None:
        return False
    try:
        sink.record(record)
    except Exception:
        logger.exception("Verification sink failed for record %s", record.id)
        return False
    logger.info(
        "Captured %s verification record %s (model=%s)",
        record.status, record.id, record.response_model,
    )
    return True


async def adeliver(sink: Optional[VerificationSink], record: VerificationRecord) -> bool:
    """deliver() from async code. Runs in a worker thread since sinks may block on disk."""
    if sink is None:
        return False
    return await asyncio.to_thread(deliver, sink, record)


def _stats(records: Iterable[VerificationRecord], submitted: set) -> Dict[str, int]:
    out = {"total": 0, "verified": 0, "invalid": 0, "error": 0, "pending": 0, "submitted": 0}
    for r in records:
        out["total"] += 1
        out[r.status] += 1
        if r.id in submitted:
            out["submitted"] += 1
    return out


class InMemoryVerificationSink:
    """Keeps records in process memory. Useful for tests and short-lived runs."""

    def __init__(self):
        self._records: List[VerificationRecord] = []
        self._submitted: set = set()
        self._lock = threading.Lock()

    def record(self, record: VerificationRecord) -> None:
        with self._lock:
            self._records.append(record)

    def all(self) -> List[VerificationRecord]:
        with self._lock:
            return list(self._records)

    def list_unsubmitted(self, limit: int = 10) -> List[VerificationRecord]:
        """Verified records not yet submitted, oldest first."""
        with self._lock:
            pending = [
                r for r in self._records
                if r.id not in self._submitted and r.status == "verified"
            ]
        pending.sort(key=lambda r: r.created_at)
        return pending[:limit]

    def mark_submitted(self, ids: Iterable[str]) -> None:
        with self._lock:
            self._submitted.update(ids)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return _stats(self._records, self._submitted)


class JsonlVerificationSink:
    """
    Append-only JSON-lines file. Each record is one line; submissions are
    recorded as {"submitted": "<id>"} marker lines so the file is never rewritten.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _append(self, obj: dict) -> None:
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(obj) + "\n")

    def _load(self):
        records: List[VerificationRecord] = []
        submitted: set = set()
        if not self.path.exists():
            return records, submitted
        with self._lock:
            with open(self.path, encoding="utf-8") as f:
                lines = f.readlines()
        for n, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
                if isinstance(obj, dict) and list(obj) == ["submitted"] and isinstance(obj["submitted"], str):
                    submitted.add(obj["submitted"])
                else:
                    records.append(VerificationRecord.model_validate(obj))
            except (json.JSONDecodeError, ValidationError):
                logger.warning("Skipping unreadable line %d in %s", n, self.path)
        return records, submitted

    def record(self, record: VerificationRecord) -> None:
        self._append(record.model_dump(mode="json"))

    def all(self) -> List[VerificationRecord]:
        return self._load()[0]

    def list_unsubmitted(self, limit: int = 10) -> List[VerificationRecord]:
        records, submitted = self._load()
        pending = [r for r in records if r.id not in submitted and r.status == "verified"]
        pending.sort(key=lambda r: r.created_at)
        return pending[:limit]

    def mark_submitted(self, ids: Iterable[str]) -> None:
        for record_id in ids:
            self._append({"submitted": record_id})

    def stats(self) -> Dict[str, int]:
        records, submitted = self._load()
        return _stats(records, submitted)
