from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Mapping, Set, Tuple

from scroll_harvester.core.models import ScrollState
from scroll_harvester.utils.time import utc_now_iso

_Flags = Tuple[bool, bool, bool]


def _flags(state: ScrollState) -> _Flags:
    return (state.has_next_page, state.reached_time_boundary, state.all_duplicates_in_last_batch)


class SQLiteStatePersistence:
    """
    SQLite-backed checkpoint store for scroll states and run counters.

    Rows are scoped by job id, so jobs walking the same entity id in
    different streams can share one database. Saves are incremental: only
    changed flags and ids accepted since the last load/save are written.
    """

    def __init__(self, path: str):
        self.path = path
        self._ensure_parent_dir(path)
        self._ensure_schema()
        self._lock = threading.Lock()
        self._saved_flags: Dict[Tuple[str, str], _Flags] = {}
        self._saved_ids: Dict[Tuple[str, str], Set[str]] = {}

    def load_all(self, job_id: str) -> Dict[str, ScrollState]:
        states: Dict[str, ScrollState] = {}
        with self._session() as conn:
            for row in conn.execute(
                """
                SELECT entity_id, has_next_page, reached_time_boundary, all_duplicates
                FROM entity_state
                WHERE job_id = ?
                """,
                (job_id,),
            ):
                states[row["entity_id"]] = ScrollState(
                    has_next_page=bool(row["has_next_page"]),
                    reached_time_boundary=bool(row["reached_time_boundary"]),
                    all_duplicates_in_last_batch=bool(row["all_duplicates"]),
                )

            for row in conn.execute("SELECT entity_id, item_id FROM entity_accepted_id WHERE job_id = ?", (job_id,)):
                state = states.setdefault(row["entity_id"], ScrollState())
                state.accepted_ids.add(row["item_id"])

        with self._lock:
            for entity_id, state in states.items():
                self._saved_flags[(job_id, entity_id)] = _flags(state)
                self._saved_ids[(job_id, entity_id)] = set(state.accepted_ids)
        return states

    def save_all(self, job_id: str, states: Mapping[str, ScrollState]) -> None:
        now = utc_now_iso()
        written: Dict[Tuple[str, str], Tuple[_Flags, Set[str]]] = {}
        with self._lock:
            with self._session() as conn:
                for entity_id, state in states.items():
                    key = (job_id, entity_id)
                    flags = _flags(state)
                    if self._saved_flags.get(key) != flags:
                        conn.execute(
                            """
                            INSERT INTO entity_state
                            (job_id, entity_id, has_next_page, reached_time_boundary, all_duplicates, updated_at_utc)
                            VALUES (?, ?, ?, ?, ?, ?)
                            ON CONFLICT(job_id, entity_id) DO UPDATE SET
                                has_next_page = excluded.has_next_page,
                                reached_time_boundary = excluded.reached_time_boundary,
                                all_duplicates = excluded.all_duplicates,
                                updated_at_utc = excluded.updated_at_utc
                            """,
                            (job_id, entity_id, *(int(f) for f in flags), now),
                        )

                    # accepted ids only ever grow
                    fresh = state.accepted_ids - self._saved_ids.get(key, set())
                    if fresh:
                        conn.executemany(
                            "INSERT OR IGNORE INTO entity_accepted_id (job_id, entity_id, item_id) VALUES (?, ?, ?)",
                            [(job_id, entity_id, item_id) for item_id in sorted(fresh)],
                        )
                    written[key] = (flags, fresh)

            # only remember what was committed
            for key, (flags, fresh) in written.items():
                self._saved_flags[key] = flags
                self._saved_ids.setdefault(key, set()).update(fresh)

    def mark_run_started(self, job_id: str) -> int:
        now = utc_now_iso()
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO job_runs (job_id, run_count, last_started_utc) VALUES (?, 1, ?)
                ON CONFLICT(job_id) DO UPDATE SET
                    run_count = job_runs.run_count + 1,
                    last_started_utc = excluded.last_started_utc
                """,
                (job_id, now),
            )
            row = conn.execute("SELECT run_count FROM job_runs WHERE job_id = ?", (job_id,)).fetchone()
        return int(row["run_count"])

    def mark_run_completed(self, job_id: str) -> None:
        with self._session() as conn:
            conn.execute(
                "UPDATE job_runs SET last_completed_utc = ? WHERE job_id = ?",
                (utc_now_iso(), job_id),
            )

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS job_runs (
                    job_id TEXT PRIMARY KEY,
                    run_count INTEGER NOT NULL DEFAULT 0,
                    last_started_utc TEXT,
                    last_completed_utc TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entity_state (
                    job_id TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    has_next_page INTEGER NOT NULL DEFAULT 1,
                    reached_time_boundary INTEGER NOT NULL DEFAULT 0,
                    all_duplicates INTEGER NOT NULL DEFAULT 0,
                    updated_at_utc TEXT NOT NULL,
                    PRIMARY KEY (job_id, entity_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entity_accepted_id (
                    job_id TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    PRIMARY KEY (job_id, entity_id, item_id)
                )
                """
            )

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self):
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _ensure_parent_dir(self, path: str) -> None:
        parent = Path(path).parent
        if str(parent) not in {"", "."}:
            parent.mkdir(parents=True, exist_ok=True)
