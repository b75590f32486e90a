"""Pipeline orchestrator: fetch, filter, classify, score, persist, gate, enrich."""

import logging
import sqlite3
from collections.abc import Callable, Iterable
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from flashfungi.agents.classifier import has_dna_evidence
from flashfungi.agents.hints import HintGenerator
from flashfungi.agents.models import Specimen
from flashfungi.agents.scorer import quality_score
from flashfungi.agents.taxonomy import build_specimen, photo_records, usable_photos
from flashfungi.core.config import RunConfig
from flashfungi.core.database import SpecimenDatabase
from flashfungi.search.inaturalist import INaturalistClient
from flashfungi.search.models import FetchFailure, Observation

logger = logging.getLogger(__name__)

# Marks a stdout line as a JSON ProgressEvent rather than a log message
PROGRESS_PREFIX = "@@progress "

Outcome = Literal["saved", "filtered", "failed"]


# ── Progress & Stats ─────────────────────────────────────────────────


class ProgressEvent(BaseModel):
    """Counter deltas for one processed item."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    outcome: Outcome
    observation_id: Optional[int] = None
    species_name: Optional[str] = None
    processed: int = 1
    saved: int = 0
    filtered: int = 0
    failed: int = 0
    dna_verified: int = 0
    hints_created: int = 0
    hints_existing: int = 0

    def to_line(self) -> str:
        return PROGRESS_PREFIX + self.model_dump_json(by_alias=True)

    @classmethod
    def from_line(cls, line: str) -> Optional["ProgressEvent"]:
        """Parse a progress line, or None if the line is a plain log message."""
        if not line.startswith(PROGRESS_PREFIX):
            return None
        return cls.model_validate_json(line[len(PROGRESS_PREFIX):])


class RunStats(BaseModel):
    """Immutable run counters; fold events in with :meth:`apply`."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    processed: int = 0
    saved: int = 0
    filtered: int = 0
    failed: int = 0
    dna_verified: int = 0
    hints_created: int = 0
    hints_existing: int = 0

    def apply(self, event: ProgressEvent) -> "RunStats":
        return RunStats(
            **{name: getattr(self, name) + getattr(event, name) for name in RunStats.model_fields}
        )

    def as_dict(self) -> dict:
        return self.model_dump(by_alias=True)


# ── Orchestrator ─────────────────────────────────────────────────────


class SpecimenPipeline:
    """Drives one end-to-end run. Single-threaded; items are processed in order."""

    def __init__(
        self,
        db: SpecimenDatabase,
        config: RunConfig,
        hint_generator: HintGenerator,
        fetcher: INaturalistClient | None = None,
        on_progress: Callable[[ProgressEvent], None] | None = None,
    ):
        self.db = db
        self.config = config
        self.hint_generator = hint_generator
        self.fetcher = fetcher
        self.on_progress = on_progress
        self._stop_requested = False

    def request_stop(self) -> None:
        """Finish the current item, then end the run."""
        self._stop_requested = True

    def run(self, observations: Iterable[Observation | FetchFailure] | None = None) -> RunStats:
        """Process every observation and return the run's counters."""
        if observations is None:
            if self.fetcher is None:
                raise ValueError("Either observations or a fetcher is required")
            logger.info(
                "Fetching up to %d observations (excluding %d taxa)",
                self.config.limit,
                len(self.config.excluded_taxa),
            )
            observations = self.fetcher.iter_observations(
                self.config.limit, self.config.excluded_taxa
            )

        stats = RunStats()
        for item in observations:
            if self._stop_requested:
                logger.info("Stop requested, ending run early")
                break
            event = self.process(item)
            stats = stats.apply(event)
            if self.on_progress is not None:
                self.on_progress(event)

        _log_summary(stats)
        return stats

    def process(self, item: Observation | FetchFailure) -> ProgressEvent:
        """Process one item. Per-item failures become a 'failed' event."""
        if isinstance(item, FetchFailure):
            logger.error("Skipping observation %s: %s", item.observation_id, item.reason)
            return ProgressEvent(outcome="failed", observation_id=item.observation_id, failed=1)

        try:
            return self._process_observation(item)
        except Exception as exc:
            logger.error("Error processing observation %s: %s", item.id, exc, exc_info=True)
            return ProgressEvent(outcome="failed", observation_id=item.id, failed=1)

    # ── Per-item Stages ──────────────────────────────────────

    def _process_observation(self, obs: Observation) -> ProgressEvent:
        logger.info("Processing: %s (%s)", obs.taxon.name, obs.id)

        photos = usable_photos(obs)
        if len(photos) < self.config.min_photos:
            logger.info(
                "Filtered %s: %d usable photo(s), need %d",
                obs.id,
                len(photos),
                self.config.min_photos,
            )
            return self._filtered(obs)

        has_dna = has_dna_evidence(obs)
        if has_dna:
            logger.info("DNA evidence found for %s (high priority)", obs.id)
        elif self.config.require_dna:
            logger.info("Filtered %s: no DNA evidence", obs.id)
            return self._filtered(obs)

        score = quality_score(obs, has_dna)
        lookup = self.fetcher.get_taxon if self.fetcher is not None else None
        specimen, used_fallback = build_specimen(obs, has_dna, score, lookup)
        if used_fallback:
            logger.warning("Using fallback family %s for %s", specimen.family, specimen.species_name)

        try:
            specimen_id, created = self.db.upsert_specimen(specimen)
            self.db.replace_specimen_photos(specimen_id, photo_records(photos))
        except sqlite3.Error as exc:
            logger.error(
                "Failed to persist %s (observation %s): %s",
                specimen.species_name,
                specimen.inaturalist_id,
                exc,
            )
            return ProgressEvent(
                outcome="failed",
                observation_id=obs.id,
                species_name=specimen.species_name,
                failed=1,
            )
        logger.info(
            "%s specimen %d: %s (score %.2f)",
            "Saved" if created else "Refreshed",
            specimen_id,
            specimen.species_name,
            score,
        )

        hint_outcome = self._ensure_hints(specimen)
        return ProgressEvent(
            outcome="saved",
            observation_id=obs.id,
            species_name=specimen.species_name,
            saved=1,
            dna_verified=int(has_dna),
            hints_created=int(hint_outcome == "created"),
            hints_existing=int(hint_outcome == "existing"),
        )

    def _ensure_hints(self, specimen: Specimen) -> str:
        """Cache gate: generate a hint set only for species without one."""
        if self.db.get_hint_set(specimen.species_name) is not None:
            logger.info("Hints already exist for %s", specimen.species_name)
            return "existing"

        logger.info("No hints for %s, generating", specimen.species_name)
        hint_set = self.hint_generator.generate(specimen)
        try:
            added = self.db.add_hint_set(hint_set)
        except sqlite3.Error as exc:
            logger.error("Failed to store hints for %s: %s", specimen.species_name, exc)
            return "failed"
        if not added:
            return "existing"
        logger.info("Created %s hints for %s", hint_set.source, specimen.species_name)
        return "created"

    def _filtered(self, obs: Observation) -> ProgressEvent:
        return ProgressEvent(
            outcome="filtered", observation_id=obs.id, species_name=obs.taxon.name, filtered=1
        )


def _log_summary(stats: RunStats) -> None:
    logger.info("=" * 60)
    logger.info("Pipeline complete")
    logger.info("Processed: %d observations", stats.processed)
    logger.info("Saved: %d specimens", stats.saved)
    logger.info("DNA-verified: %d specimens", stats.dna_verified)
    logger.info("Filtered: %d observations", stats.filtered)
    logger.info("Failed: %d observations", stats.failed)
    logger.info("New hints created: %d species", stats.hints_created)
    logger.info("Existing hints found: %d species", stats.hints_existing)
