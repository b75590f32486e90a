"""Tests for the deterministic quality score."""

from datetime import date

import pytest

from conftest import make_observation
from flashfungi.agents.scorer import quality_score

TODAY = date(2026, 10, 19)


def test_base_case():
    obs = make_observation(quality_grade="needs_id", photos=1, num_identification_agreements=0)
    assert quality_score(obs, has_dna=False, today=TODAY) == 0.5


def test_research_grade_with_three_photos():
    obs = make_observation()
    assert quality_score(obs, has_dna=False, today=TODAY) == 0.75


def test_dna_is_the_dominant_bonus():
    obs = make_observation(quality_grade="needs_id", photos=1, num_identification_agreements=0)
    assert quality_score(obs, has_dna=True, today=TODAY) == 0.8


@pytest.mark.parametrize("photos,expected", [(2, 0.5), (3, 0.55), (4, 0.55), (5, 0.6)])
def test_photo_tiers(photos, expected):
    obs = make_observation(quality_grade=None, photos=photos, num_identification_agreements=0)
    assert quality_score(obs, has_dna=False, today=TODAY) == expected


@pytest.mark.parametrize("agreements,expected", [(1, 0.5), (2, 0.55), (3, 0.6), (7, 0.6)])
def test_agreement_tiers(agreements, expected):
    obs = make_observation(quality_grade=None, photos=1, num_identification_agreements=agreements)
    assert quality_score(obs, has_dna=False, today=TODAY) == expected


def test_recent_observation_bonus():
    recent = make_observation(
        quality_grade=None, photos=1, num_identification_agreements=0, observed_on="2026-06-01"
    )
    old = make_observation(
        quality_grade=None, photos=1, num_identification_agreements=0, observed_on="2024-06-01"
    )
    assert quality_score(recent, has_dna=False, today=TODAY) == 0.55
    assert quality_score(old, has_dna=False, today=TODAY) == 0.5


def test_missing_date_gets_no_recency_bonus():
    obs = make_observation(quality_grade=None, photos=1, num_identification_agreements=0, observed_on="")
    assert quality_score(obs, has_dna=False, today=TODAY) == 0.5


def test_score_is_clamped_to_one():
    obs = make_observation(photos=6, num_identification_agreements=4, observed_on="2026-10-01")
    # 0.5 + 0.2 + 0.3 + 0.1 + 0.1 + 0.05 = 1.25
    assert quality_score(obs, has_dna=True, today=TODAY) == 1.0


def test_null_agreements_treated_as_zero():
    obs = make_observation(num_identification_agreements=None, quality_grade=None, photos=1)
    assert quality_score(obs, has_dna=False, today=TODAY) == 0.5


def test_photos_without_url_do_not_count():
    photos = [
        {"id": i, "url": f"https://static.inaturalist.org/photos/{i}/square.jpg",
         "original_dimensions": {"width": 1000, "height": 800}}
        for i in range(3)
    ] + [{"id": 10 + i, "url": None} for i in range(2)]
    obs = make_observation(quality_grade=None, photos=photos, num_identification_agreements=0)
    assert len(obs.photos) == 5
    assert quality_score(obs, has_dna=False, today=TODAY) == 0.55
