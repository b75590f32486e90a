"""Export convenience function."""

import logging
from pathlib import Path

from flashfungi.core.database import SpecimenDatabase
from flashfungi.exporters.review_queue import export_review_csv, export_review_excel

logger = logging.getLogger(__name__)


def export_review_queue(db: SpecimenDatabase, output_dir: str | None = None) -> dict:
    """Run all exports and return dict of file paths created."""
    if output_dir is None:
        output_dir = str(Path(db.db_path).parent / "exports")

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    paths = {}

    csv_path = str(out / "review_queue.csv")
    export_review_csv(db, csv_path)
    paths["review_csv"] = csv_path

    xlsx_path = str(out / "review_queue.xlsx")
    export_review_excel(db, xlsx_path)
    paths["review_xlsx"] = xlsx_path

    logger.info("All exports written to %s", output_dir)
    return paths
