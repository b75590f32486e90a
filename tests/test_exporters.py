"""Tests for review queue exports."""

import csv

import openpyxl

from conftest import make_specimen
from flashfungi.agents.hints import template_hint_set
from flashfungi.exporters import export_review_queue
from flashfungi.exporters.review_queue import (
    HEADERS,
    export_review_csv,
    export_review_excel,
    review_summary,
)


def _populate(db):
    db.upsert_specimen(make_specimen(dna_sequenced=True, quality_score=0.95))
    db.upsert_specimen(
        make_specimen(
            inaturalist_id="2001",
            species_name="Suillus pungens",
            genus="Suillus",
            family="Suillaceae",
            quality_score=0.6,
        )
    )
    db.add_hint_set(template_hint_set(make_specimen()))


def test_review_csv(db, tmp_path):
    _populate(db)
    path = tmp_path / "review.csv"
    assert export_review_csv(db, str(path)) == 2

    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert list(rows[0].keys()) == HEADERS
    assert rows[0]["species_name"] == "Amanita muscaria"
    assert rows[0]["dna_sequenced"] == "yes"
    assert rows[0]["hint_source"] == "template-fallback"
    assert rows[0]["taxonomic_hint"] == "This belongs to family Amanitaceae."
    # no hint set cached for the second species
    assert rows[1]["hint_source"] == ""


def test_review_excel(db, tmp_path):
    _populate(db)
    path = tmp_path / "review.xlsx"
    assert export_review_excel(db, str(path)) == 2

    wb = openpyxl.load_workbook(path)
    assert wb.sheetnames == ["Review Queue", "Species Hints"]
    ws = wb["Review Queue"]
    assert [c.value for c in ws[1]] == HEADERS
    assert ws.max_row == 3
    assert ws["A1"].font.bold
    assert wb["Species Hints"].max_row == 2


def test_export_review_queue_default_dir(db):
    _populate(db)
    paths = export_review_queue(db)
    assert set(paths) == {"review_csv", "review_xlsx"}
    assert paths["review_csv"].startswith(str(db.db_path.parent / "exports"))


def test_review_summary(db):
    _populate(db)
    summary = review_summary(db)
    assert summary == {
        "total_specimens": 2,
        "pending": 2,
        "dna_sequenced": 1,
        "hint_sets": 1,
        "template_hint_sets": 1,
    }
