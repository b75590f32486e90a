"""SQLite record store: specimens, species hint sets, pipeline jobs and logs."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from flashfungi.agents.models import (
    SPECIMEN_STATUSES,
    SpeciesHintSet,
    Specimen,
    SpecimenPhoto,
)
from flashfungi.agents.taxonomy import normalize_species_name

logger = logging.getLogger(__name__)

JOB_STATUSES = ("running", "completed", "failed", "stopped")

# ── Schema DDL ───────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS specimens (
    id              INTEGER PRIMARY KEY,
    inaturalist_id  TEXT NOT NULL UNIQUE,
    species_name    TEXT NOT NULL,
    genus           TEXT,
    family          TEXT,
    common_name     TEXT,
    location        TEXT,
    description     TEXT,
    dna_sequenced   INTEGER NOT NULL DEFAULT 0,
    quality_score   REAL CHECK (quality_score >= 0.0 AND quality_score <= 1.0),
    status          TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'approved', 'rejected')),
    selected_photos TEXT NOT NULL DEFAULT '[]',  -- JSON array of photo ids
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_specimens_status  ON specimens(status);
CREATE INDEX IF NOT EXISTS idx_specimens_species ON specimens(species_name);

CREATE TABLE IF NOT EXISTS specimen_photos (
    id                   INTEGER PRIMARY KEY,
    specimen_id          INTEGER NOT NULL REFERENCES specimens(id) ON DELETE CASCADE,
    inaturalist_photo_id TEXT NOT NULL,
    photo_url            TEXT NOT NULL,
    is_primary           INTEGER NOT NULL DEFAULT 0,
    width                INTEGER,
    height               INTEGER,
    UNIQUE (specimen_id, inaturalist_photo_id)
);

CREATE TABLE IF NOT EXISTS species_hints (
    id              INTEGER PRIMARY KEY,
    species_name    TEXT NOT NULL UNIQUE,
    genus           TEXT,
    family          TEXT,
    common_name     TEXT,
    hints           TEXT NOT NULL,  -- JSON array of 4 hints
    source          TEXT NOT NULL
                    CHECK (source IN ('ai-generated', 'template-fallback')),
    confidence      REAL CHECK (confidence >= 0.0 AND confidence <= 1.0),
    admin_reviewed  INTEGER NOT NULL DEFAULT 0,
    model           TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pipeline_runs (
    id               TEXT PRIMARY KEY,
    started_at       TEXT NOT NULL,
    ended_at         TEXT,
    status           TEXT NOT NULL DEFAULT 'running'
                     CHECK (status IN ('running', 'completed', 'failed', 'stopped')),
    config           TEXT NOT NULL DEFAULT '{}',  -- JSON
    stats            TEXT NOT NULL DEFAULT '{}',  -- JSON
    exit_code        INTEGER,
    duration_seconds INTEGER,
    started_by       TEXT,
    stopped_by       TEXT
);

-- At most one running job, system-wide
CREATE UNIQUE INDEX IF NOT EXISTS idx_runs_single_running
    ON pipeline_runs(status) WHERE status = 'running';

CREATE TABLE IF NOT EXISTS pipeline_logs (
    id          INTEGER PRIMARY KEY,
    job_id      TEXT NOT NULL REFERENCES pipeline_runs(id),
    message     TEXT NOT NULL,
    type        TEXT NOT NULL DEFAULT 'info' CHECK (type IN ('info', 'error')),
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_logs_job ON pipeline_logs(job_id);
"""


class JobConflictError(RuntimeError):
    """Raised when a job is started while another one is running."""


# ── SpecimenDatabase ─────────────────────────────────────────────────


class SpecimenDatabase:
    """Single write path for pipeline output and job state."""

    def __init__(self, db_path: str | Path, check_same_thread: bool = True):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            str(self.db_path), timeout=30.0, check_same_thread=check_same_thread
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    # ── Specimens ────────────────────────────────────────────

    def upsert_specimen(self, specimen: Specimen) -> tuple[int, bool]:
        """Insert or refresh a specimen keyed on its iNaturalist id.

        Returns ``(specimen_id, created)``. A refresh updates every derived
        field but never the review status.
        """
        now = _now()
        values = (
            normalize_species_name(specimen.species_name),
            specimen.genus,
            specimen.family,
            specimen.common_name,
            specimen.location,
            specimen.description,
            int(specimen.dna_sequenced),
            specimen.quality_score,
            json.dumps(specimen.selected_photos),
        )

        row = self._conn.execute(
            "SELECT id FROM specimens WHERE inaturalist_id = ?",
            (specimen.inaturalist_id,),
        ).fetchone()
        if row:
            self._conn.execute(
                """UPDATE specimens
                   SET species_name = ?, genus = ?, family = ?, common_name = ?,
                       location = ?, description = ?, dna_sequenced = ?,
                       quality_score = ?, selected_photos = ?, updated_at = ?
                   WHERE id = ?""",
                (*values, now, row["id"]),
            )
            self._conn.commit()
            return row["id"], False

        cur = self._conn.execute(
            """INSERT INTO specimens
               (species_name, genus, family, common_name, location, description,
                dna_sequenced, quality_score, selected_photos, inaturalist_id,
                status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (*values, specimen.inaturalist_id, specimen.status, now, now),
        )
        self._conn.commit()
        return cur.lastrowid, True

    def replace_specimen_photos(self, specimen_id: int, photos: list[SpecimenPhoto]) -> None:
        self._conn.execute("DELETE FROM specimen_photos WHERE specimen_id = ?", (specimen_id,))
        self._conn.executemany(
            """INSERT INTO specimen_photos
               (specimen_id, inaturalist_photo_id, photo_url, is_primary, width, height)
               VALUES (?, ?, ?, ?, ?, ?)""",
            [
                (specimen_id, p.inaturalist_photo_id, p.photo_url, int(p.is_primary), p.width, p.height)
                for p in photos
            ],
        )
        self._conn.commit()

    def get_specimen(self, specimen_id: int) -> Optional[dict]:
        row = self._conn.execute("SELECT * FROM specimens WHERE id = ?", (specimen_id,)).fetchone()
        return _specimen_dict(row) if row else None

    def get_specimen_by_source(self, inaturalist_id: str) -> Optional[dict]:
        row = self._conn.execute(
            "SELECT * FROM specimens WHERE inaturalist_id = ?", (inaturalist_id,)
        ).fetchone()
        return _specimen_dict(row) if row else None

    def get_specimens_by_status(self, status: str) -> list[dict]:
        if status not in SPECIMEN_STATUSES:
            raise ValueError(f"Invalid status: {status}")
        rows = self._conn.execute(
            "SELECT * FROM specimens WHERE status = ? ORDER BY quality_score DESC, id",
            (status,),
        ).fetchall()
        return [_specimen_dict(r) for r in rows]

    def get_specimens_by_species(self, species_name: str) -> list[dict]:
        rows = self._conn.execute(
            "SELECT * FROM specimens WHERE species_name = ? ORDER BY id",
            (normalize_species_name(species_name),),
        ).fetchall()
        return [_specimen_dict(r) for r in rows]

    def get_specimen_photos(self, specimen_id: int) -> list[dict]:
        rows = self._conn.execute(
            "SELECT * FROM specimen_photos WHERE specimen_id = ? ORDER BY is_primary DESC, id",
            (specimen_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    # ── Species Hints ────────────────────────────────────────

    def get_hint_set(self, species_name: str) -> Optional[dict]:
        """Cached hint set for a species, keyed on the normalized name."""
        row = self._conn.execute(
            "SELECT * FROM species_hints WHERE species_name = ?",
            (normalize_species_name(species_name),),
        ).fetchone()
        if row is None:
            return None
        data = dict(row)
        data["hints"] = json.loads(data["hints"])
        data["admin_reviewed"] = bool(data["admin_reviewed"])
        return data

    def add_hint_set(self, hint_set: SpeciesHintSet) -> bool:
        """Store a hint set unless one exists for the species. Returns True if added."""
        now = _now()
        cur = self._conn.execute(
            """INSERT INTO species_hints
               (species_name, genus, family, common_name, hints, source,
                confidence, admin_reviewed, model, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(species_name) DO NOTHING""",
            (
                normalize_species_name(hint_set.species_name),
                hint_set.genus,
                hint_set.family,
                hint_set.common_name,
                json.dumps([h.model_dump() for h in hint_set.hints]),
                hint_set.source,
                hint_set.confidence,
                int(hint_set.admin_reviewed),
                hint_set.model,
                now,
                now,
            ),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def count_hint_sets(self, species_name: str | None = None) -> int:
        if species_name is None:
            return self._conn.execute("SELECT COUNT(*) FROM species_hints").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM species_hints WHERE species_name = ?",
            (normalize_species_name(species_name),),
        ).fetchone()[0]

    # ── Pipeline Jobs ────────────────────────────────────────

    def create_job(self, job_id: str, config: dict, started_by: str | None = None) -> None:
        """Insert a running job row. Raises JobConflictError if one is running."""
        try:
            self._conn.execute(
                """INSERT INTO pipeline_runs (id, started_at, status, config, started_by)
                   VALUES (?, ?, 'running', ?, ?)""",
                (job_id, _now(), json.dumps(config), started_by),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            raise JobConflictError("Pipeline is already running") from exc

    def finish_job(
        self,
        job_id: str,
        status: str,
        stats: dict | None = None,
        exit_code: int | None = None,
        duration_seconds: int | None = None,
        stopped_by: str | None = None,
    ) -> None:
        if status not in JOB_STATUSES or status == "running":
            raise ValueError(f"Invalid final status: {status}")
        self._conn.execute(
            """UPDATE pipeline_runs
               SET status = ?, ended_at = ?, stats = ?, exit_code = ?,
                   duration_seconds = ?, stopped_by = COALESCE(?, stopped_by)
               WHERE id = ?""",
            (status, _now(), json.dumps(stats or {}), exit_code, duration_seconds, stopped_by, job_id),
        )
        self._conn.commit()

    def get_job(self, job_id: str) -> Optional[dict]:
        row = self._conn.execute("SELECT * FROM pipeline_runs WHERE id = ?", (job_id,)).fetchone()
        return _job_dict(row) if row else None

    def has_running_job(self) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM pipeline_runs WHERE status = 'running' LIMIT 1"
        ).fetchone()
        return row is not None

    def list_jobs(self, limit: int = 20, offset: int = 0) -> tuple[list[dict], int]:
        rows = self._conn.execute(
            "SELECT * FROM pipeline_runs ORDER BY started_at DESC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
        total = self._conn.execute("SELECT COUNT(*) FROM pipeline_runs").fetchone()[0]
        return [_job_dict(r) for r in rows], total

    def fail_orphaned_jobs(self) -> int:
        """Mark jobs left 'running' by a previous manager process as failed."""
        cur = self._conn.execute(
            "UPDATE pipeline_runs SET status = 'failed', ended_at = ? WHERE status = 'running'",
            (_now(),),
        )
        self._conn.commit()
        if cur.rowcount:
            logger.warning("Marked %d orphaned running job(s) as failed", cur.rowcount)
        return cur.rowcount

    def add_job_log(self, job_id: str, message: str, log_type: str = "info") -> None:
        self._conn.execute(
            "INSERT INTO pipeline_logs (job_id, message, type, created_at) VALUES (?, ?, ?, ?)",
            (job_id, message, log_type, _now()),
        )
        self._conn.commit()

    def get_job_logs(self, job_id: str, limit: int = 100, offset: int = 0) -> tuple[list[dict], int]:
        rows = self._conn.execute(
            """SELECT created_at AS timestamp, message, type FROM pipeline_logs
               WHERE job_id = ? ORDER BY id LIMIT ? OFFSET ?""",
            (job_id, limit, offset),
        ).fetchall()
        total = self._conn.execute(
            "SELECT COUNT(*) FROM pipeline_logs WHERE job_id = ?", (job_id,)
        ).fetchone()[0]
        return [dict(r) for r in rows], total

    # ── Pipeline Stats ───────────────────────────────────────

    def get_pipeline_stats(self) -> dict:
        """Specimen counts by status plus DNA and hint-set totals."""
        stats = {
            r["status"]: r["cnt"]
            for r in self._conn.execute(
                "SELECT status, COUNT(*) AS cnt FROM specimens GROUP BY status"
            ).fetchall()
        }
        stats["total_specimens"] = self._conn.execute(
            "SELECT COUNT(*) FROM specimens"
        ).fetchone()[0]
        stats["dna_sequenced"] = self._conn.execute(
            "SELECT COUNT(*) FROM specimens WHERE dna_sequenced = 1"
        ).fetchone()[0]
        for r in self._conn.execute(
            "SELECT source, COUNT(*) AS cnt FROM species_hints GROUP BY source"
        ).fetchall():
            stats[f"hint_sets_{r['source']}"] = r["cnt"]
        stats["total_hint_sets"] = self.count_hint_sets()
        return stats

    # ── Cleanup ──────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()


# ── Helpers ──────────────────────────────────────────────────────────


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _specimen_dict(row: sqlite3.Row) -> dict:
    data = dict(row)
    data["dna_sequenced"] = bool(data["dna_sequenced"])
    data["selected_photos"] = json.loads(data["selected_photos"])
    return data


def _job_dict(row: sqlite3.Row) -> dict:
    data = dict(row)
    data["config"] = json.loads(data["config"])
    data["stats"] = json.loads(data["stats"])
    return data
