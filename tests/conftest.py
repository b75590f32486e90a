"""Shared fixtures: observation records shaped like iNaturalist API results."""

import pytest

from flashfungi.agents.models import Specimen
from flashfungi.core.database import SpecimenDatabase
from flashfungi.search.models import Observation

AMANITA_ANCESTORS = [
    {"id": 47170, "name": "Fungi", "rank": "kingdom"},
    {"id": 47169, "name": "Basidiomycota", "rank": "phylum"},
    {"id": 50814, "name": "Agaricomycetes", "rank": "class"},
    {"id": 47161, "name": "Agaricales", "rank": "order"},
    {"id": 47347, "name": "Amanitaceae", "rank": "family"},
    {"id": 48701, "name": "Amanita", "rank": "genus"},
]


def observation_record(obs_id=1001, name="Amanita muscaria", photos=3, **kw) -> dict:
    """A detail-endpoint record; keyword arguments override top-level keys.

    ``photos`` is either a count of generated photos or a list of raw photo dicts.
    """
    if isinstance(photos, int):
        photos = [
            {
                "id": obs_id * 10 + i,
                "url": f"https://static.inaturalist.org/photos/{obs_id * 10 + i}/square.jpg",
                "original_dimensions": {"width": 1000 + i * 100, "height": 800},
            }
            for i in range(photos)
        ]
    record = {
        "id": obs_id,
        "taxon": {
            "id": 48715,
            "name": name,
            "rank": "species",
            "preferred_common_name": "Fly Agaric",
            "ancestors": AMANITA_ANCESTORS,
        },
        "description": "Under ponderosa pine after monsoon rains.",
        "ofvs": [],
        "comments": [],
        "photos": photos,
        "quality_grade": "research",
        "num_identification_agreements": 1,
        "observed_on": "2020-08-01",
        "place_guess": "Flagstaff, AZ, USA",
    }
    record.update(kw)
    return record


def make_observation(**kw) -> Observation:
    return Observation.from_api(observation_record(**kw))


def make_specimen(**kw) -> Specimen:
    defaults = dict(
        species_name="Amanita muscaria",
        genus="Amanita",
        family="Amanitaceae",
        common_name="Fly Agaric",
        inaturalist_id="1001",
        location="Flagstaff, AZ, USA",
        description="Under ponderosa pine after monsoon rains.",
        dna_sequenced=False,
        quality_score=0.75,
        selected_photos=[10010, 10011, 10012],
    )
    defaults.update(kw)
    return Specimen(**defaults)


@pytest.fixture()
def db(tmp_path):
    """Create a fresh SpecimenDatabase in a temp directory."""
    sdb = SpecimenDatabase(tmp_path / "flashfungi.db")
    yield sdb
    sdb.close()
