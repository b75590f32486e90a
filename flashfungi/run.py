"""Pipeline run entry point (also the process the job manager spawns)."""

import argparse
import logging
import os
import signal
import sys
import time

from flashfungi.agents.hints import HintGenerator
from flashfungi.core.config import RunConfig, load_settings
from flashfungi.core.database import SpecimenDatabase
from flashfungi.exporters import export_review_queue
from flashfungi.exporters.review_queue import review_summary
from flashfungi.pipeline import ProgressEvent, SpecimenPipeline
from flashfungi.search.inaturalist import INaturalistClient

logger = logging.getLogger("pipeline")


def _configure_logging() -> None:
    # stdout, so a supervising job manager files these lines as "info"
    level_name = os.getenv("FLASHFUNGI_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )


def _emit_progress(event: ProgressEvent) -> None:
    print(event.to_line(), flush=True)


# ── Run ──────────────────────────────────────────────────────────────


def run_pipeline(args: argparse.Namespace) -> int:
    """Run once with settings from ``--settings`` and options from the environment."""
    t_start = time.time()
    settings = load_settings(args.settings)

    data = RunConfig.from_env().model_dump()
    overrides = {
        "limit": args.limit,
        "min_photos": args.min_photos,
        "excluded_taxa": args.exclude_taxa,
        "require_dna": True if args.require_dna else None,
    }
    data.update({k: v for k, v in overrides.items() if v is not None})
    config = RunConfig.model_validate(data)
    logger.info("Run config: %s", config.model_dump_json(by_alias=True))

    db = SpecimenDatabase(settings.database.path)
    logger.info("Database: %s", db.db_path)

    pipeline = SpecimenPipeline(
        db,
        config,
        HintGenerator.from_settings(settings.llm),
        fetcher=INaturalistClient(settings.inaturalist),
        on_progress=_emit_progress if args.progress else None,
    )

    def _on_sigterm(signum, frame):
        logger.info("Received SIGTERM, stopping after the current observation")
        pipeline.request_stop()

    previous_handler = signal.signal(signal.SIGTERM, _on_sigterm)

    try:
        pipeline.run()
        if args.export_dir:
            paths = export_review_queue(db, args.export_dir)
            for name, path in paths.items():
                logger.info("  %s: %s", name, path)
        logger.info("Review queue: %s", review_summary(db))
    except Exception as exc:
        logger.error("Pipeline failed: %s", exc, exc_info=True)
        return 1
    finally:
        signal.signal(signal.SIGTERM, previous_handler)
        logger.info("Finished in %.1fs", time.time() - t_start)
        db.close()
    return 0


# ── CLI ──────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the flashfungi specimen pipeline")
    parser.add_argument("--settings", default=None, help="Path to settings YAML file")
    parser.add_argument("--limit", type=int, default=None, help="Maximum observations to fetch")
    parser.add_argument("--min-photos", type=int, default=None, help="Minimum usable photos")
    parser.add_argument(
        "--require-dna", action="store_true", help="Reject observations without DNA evidence"
    )
    parser.add_argument(
        "--exclude-taxa",
        default=None,
        help="Comma-separated iNaturalist taxon ids to exclude",
    )
    parser.add_argument(
        "--export-dir", default=None, help="Write the review queue export here after the run"
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Print machine-readable progress lines (used by the job manager)",
    )
    args = parser.parse_args(argv)

    _configure_logging()
    return run_pipeline(args)


if __name__ == "__main__":
    sys.exit(main())
