# ABOUTME: Defines the interaction-log and catalog collaborators the engine reads from.
# ABOUTME: Ships in-memory implementations plus parquet/CSV loaders for the CLI.

from __future__ import annotations

import threading
from datetime import timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Protocol, Sequence

import pandas as pd

from src.common.console import log, warn
from src.common.errors import CorruptCandidateAttributes
from src.common.schemas import ATTRIBUTE_CLASSES, InteractionRecord, Outcome, parse_candidate

EVENT_COLUMNS = [
    "record_id",
    "candidate_id",
    "category",
    "difficulty",
    "assigned_at",
    "outcome",
]


class InteractionLog(Protocol):
    def records(self) -> List[InteractionRecord]:
        ...

    def append(self, record: InteractionRecord) -> None:
        ...


class CandidateCatalog(Protocol):
    def active_candidates(self) -> List[Any]:
        ...


class InMemoryInteractionLog:
    """
    Append-only list of interaction records.

    A pending record may be superseded once by its terminal version (same
    record_id); terminal records are never replaced.
    """

    def __init__(self, records: Optional[Iterable[InteractionRecord]] = None) -> None:
        self._lock = threading.Lock()
        self._records: List[InteractionRecord] = []
        for record in records or ():
            self.append(record)

    def records(self) -> List[InteractionRecord]:
        with self._lock:
            return list(self._records)

    def append(self, record: InteractionRecord) -> None:
        with self._lock:
            for i, existing in enumerate(self._records):
                if existing.record_id != record.record_id:
                    continue
                if existing.is_terminal:
                    raise ValueError(f"Record '{record.record_id}' is already terminal.")
                self._records[i] = record
                return
            self._records.append(record)

    def __len__(self) -> int:
        return len(self._records)


class InMemoryCatalog:
    def __init__(self, candidates: Optional[Iterable[Any]] = None) -> None:
        self._candidates = list(candidates or ())

    def active_candidates(self) -> List[Any]:
        return list(self._candidates)


def records_from_frame(events_df: pd.DataFrame) -> List[InteractionRecord]:
    """
    Convert an events table into interaction records in chronological order.

    Required columns: record_id, candidate_id, category, difficulty,
    assigned_at, outcome (empty for pending). Optional: rating,
    completion_minutes, photo_captured, shared, and the attribute columns.
    Naive timestamps are read as UTC. Rows with corrupt attributes are
    dropped with a warning.
    """

    missing = [c for c in EVENT_COLUMNS if c not in events_df.columns]
    if missing:
        raise ValueError(f"Events table missing columns: {', '.join(missing)}")

    df = events_df.copy()
    df["assigned_at"] = pd.to_datetime(df["assigned_at"])
    if df["assigned_at"].dt.tz is None:
        df["assigned_at"] = df["assigned_at"].dt.tz_localize(timezone.utc)
    df = df.sort_values("assigned_at", kind="mergesort")
    df = df.astype(object).where(df.notna(), None)

    records = []
    for row in df.to_dict("records"):
        try:
            attributes = parse_candidate(row)
        except CorruptCandidateAttributes as exc:
            warn("sources", f"dropping event {row.get('record_id')!r}: {exc}")
            continue
        records.append(
            InteractionRecord(
                record_id=str(row["record_id"]),
                attributes=attributes,
                assigned_at=row["assigned_at"].to_pydatetime(),
                outcome=Outcome(row["outcome"]) if not _missing(row["outcome"]) else None,
                rating=int(row["rating"]) if not _missing(row.get("rating")) else None,
                completion_minutes=(
                    float(row["completion_minutes"]) if not _missing(row.get("completion_minutes")) else None
                ),
                photo_captured=bool(row["photo_captured"]) if not _missing(row.get("photo_captured")) else None,
                shared=bool(row["shared"]) if not _missing(row.get("shared")) else None,
            )
        )
    return records


def records_to_frame(records: Sequence[InteractionRecord]) -> pd.DataFrame:
    rows = []
    for record in records:
        row = {
            "record_id": record.record_id,
            "candidate_id": record.candidate_id,
            "category": record.category,
            "difficulty": record.difficulty,
            "assigned_at": record.assigned_at,
            "outcome": record.outcome.value if record.outcome is not None else None,
            "rating": record.rating,
            "completion_minutes": record.completion_minutes,
            "photo_captured": record.photo_captured,
            "shared": record.shared,
        }
        for name in ATTRIBUTE_CLASSES:
            row[name] = record.attributes.attribute(name)
        rows.append(row)
    return pd.DataFrame(rows)


def load_history(path: Path) -> InMemoryInteractionLog:
    """Read an events parquet or CSV file into an in-memory log."""

    path = Path(path)
    events_df = pd.read_csv(path) if path.suffix == ".csv" else pd.read_parquet(path)
    records = records_from_frame(events_df)
    log("sources", f"loaded {len(records)} interaction(s) from {path}")
    return InMemoryInteractionLog(records)


def load_catalog(path: Path) -> InMemoryCatalog:
    """Read catalog rows as raw mappings; validation happens at scoring time."""

    path = Path(path)
    catalog_df = pd.read_csv(path) if path.suffix == ".csv" else pd.read_parquet(path)
    catalog_df = catalog_df.astype(object).where(catalog_df.notna(), None)
    candidates = catalog_df.to_dict("records")
    log("sources", f"loaded {len(candidates)} candidate(s) from {path}")
    return InMemoryCatalog(candidates)


def _missing(value: Any) -> bool:
    return value is None or (not isinstance(value, str) and pd.isna(value))
