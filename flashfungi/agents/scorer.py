"""Deterministic quality score for candidate observations."""

from datetime import date

from flashfungi.agents.taxonomy import usable_photos
from flashfungi.search.models import Observation

BASE_SCORE = 0.5
RESEARCH_GRADE_BONUS = 0.2
DNA_BONUS = 0.3
RECENT_DAYS = 365


def quality_score(observation: Observation, has_dna: bool, today: date | None = None) -> float:
    """Weighted usefulness score in [0.5, 1.0].

    Additive bonuses on a 0.5 base: research grade, DNA evidence (dominant),
    usable photo count tiers (>=5, >=3), community agreement tiers (>=3, >=2) and an
    observation date within the last year. Clamped to 1.0.
    """
    today = today or date.today()
    score = BASE_SCORE

    if observation.quality_grade == "research":
        score += RESEARCH_GRADE_BONUS

    if has_dna:
        score += DNA_BONUS

    photos = len(usable_photos(observation))
    if photos >= 5:
        score += 0.1
    elif photos >= 3:
        score += 0.05

    agreements = observation.num_identification_agreements
    if agreements >= 3:
        score += 0.1
    elif agreements >= 2:
        score += 0.05

    if observation.observed_on and (today - observation.observed_on).days <= RECENT_DAYS:
        score += 0.05

    return min(round(score, 2), 1.0)
