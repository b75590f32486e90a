"""Review queue exports: pending specimens with their species hints."""

import csv
import logging

import openpyxl

from flashfungi.agents.models import HINT_TYPES
from flashfungi.core.database import SpecimenDatabase

logger = logging.getLogger(__name__)

HEADERS = [
    "specimen_id",
    "inaturalist_id",
    "species_name",
    "common_name",
    "genus",
    "family",
    "location",
    "dna_sequenced",
    "quality_score",
    "photo_count",
    "hint_source",
    "hints_reviewed",
    *(f"{t}_hint" for t in HINT_TYPES),
]


# ── Helpers ──────────────────────────────────────────────────────────


def _build_rows(db: SpecimenDatabase, status: str) -> list[list]:
    """One row per specimen with the given status, best score first."""
    rows = []
    for specimen in db.get_specimens_by_status(status):
        hint_set = db.get_hint_set(specimen["species_name"])
        hints = {h["type"]: h["text"] for h in hint_set["hints"]} if hint_set else {}
        rows.append(
            [
                specimen["id"],
                specimen["inaturalist_id"],
                specimen["species_name"],
                specimen["common_name"] or "",
                specimen["genus"],
                specimen["family"],
                specimen["location"],
                "yes" if specimen["dna_sequenced"] else "no",
                specimen["quality_score"],
                len(specimen["selected_photos"]),
                hint_set["source"] if hint_set else "",
                ("yes" if hint_set["admin_reviewed"] else "no") if hint_set else "",
                *(hints.get(t, "") for t in HINT_TYPES),
            ]
        )
    return rows


# ── Public API ───────────────────────────────────────────────────────


def review_summary(db: SpecimenDatabase) -> dict:
    """Counts an operator checks after a run."""
    stats = db.get_pipeline_stats()
    return {
        "total_specimens": stats["total_specimens"],
        "pending": stats.get("pending", 0),
        "dna_sequenced": stats["dna_sequenced"],
        "hint_sets": stats["total_hint_sets"],
        "template_hint_sets": stats.get("hint_sets_template-fallback", 0),
    }


def export_review_csv(db: SpecimenDatabase, output_path: str, status: str = "pending") -> int:
    """Write the review queue to CSV. Returns the row count."""
    rows = _build_rows(db, status)
    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(HEADERS)
        writer.writerows(rows)
    logger.info("Review queue CSV: %d specimens -> %s", len(rows), output_path)
    return len(rows)


def export_review_excel(db: SpecimenDatabase, output_path: str, status: str = "pending") -> int:
    """Write the review queue to an Excel workbook. Returns the row count."""
    rows = _build_rows(db, status)
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Review Queue"
    ws.append(HEADERS)
    for row in rows:
        ws.append(row)
    _style_header(ws)

    # Sheet 2: every cached hint set, reviewed or not
    ws2 = wb.create_sheet("Species Hints")
    ws2.append(["species_name", "family", "source", "confidence", "admin_reviewed", "model"])
    for r in db._conn.execute(
        """SELECT species_name, family, source, confidence, admin_reviewed, model
           FROM species_hints ORDER BY species_name"""
    ).fetchall():
        ws2.append(list(dict(r).values()))
    _style_header(ws2)

    wb.save(output_path)
    logger.info("Review queue Excel: %d specimens -> %s", len(rows), output_path)
    return len(rows)


def _style_header(ws) -> None:
    """Bold the header row and keep it visible."""
    from openpyxl.styles import Font
    for cell in ws[1]:
        cell.font = Font(bold=True)
    ws.freeze_panes = "A2"
