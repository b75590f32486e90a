"""Turn an accepted observation into a Specimen: names, family, text, photos."""

import logging
import re
from collections.abc import Callable
from typing import Optional

from flashfungi.agents.models import Specimen, SpecimenPhoto
from flashfungi.search.models import Observation, Photo, Taxon

logger = logging.getLogger(__name__)

DEFAULT_LOCATION = "Arizona, USA"
NO_DESCRIPTION = "No description provided"
KINGDOM_FALLBACK = "Fungi (Kingdom)"

# Annotation fields merged into the specimen description
CONTEXT_FIELD_KEYWORDS = ("habitat", "substrate", "host", "growing", "notes")

# Used only when the taxon's ancestry has no family rank
GENUS_FAMILIES: dict[str, str] = {
    "agaricus": "Agaricaceae",
    "amanita": "Amanitaceae",
    "armillaria": "Physalacriaceae",
    "boletus": "Boletaceae",
    "cantharellus": "Cantharellaceae",
    "cortinarius": "Cortinariaceae",
    "ganoderma": "Polyporaceae",
    "gymnopilus": "Hymenogastraceae",
    "helvella": "Helvellaceae",
    "inocybe": "Inocybaceae",
    "lactarius": "Russulaceae",
    "lentinula": "Omphalotaceae",
    "morchella": "Morchellaceae",
    "pleurotus": "Pleurotaceae",
    "psilocybe": "Hymenogastraceae",
    "russula": "Russulaceae",
    "suillus": "Suillaceae",
    "trametes": "Polyporaceae",
    "tricholoma": "Tricholomataceae",
}

_SPACE_RE = re.compile(r"\s+")

TaxonLookup = Callable[[int], Taxon]


# ── Names ────────────────────────────────────────────────────────────


def normalize_species_name(name: str) -> str:
    """Trim and collapse whitespace; case is preserved."""
    return _SPACE_RE.sub(" ", name).strip()


def resolve_genus(taxon: Taxon) -> str:
    genus = taxon.ancestor("genus")
    if genus:
        return genus.name
    return normalize_species_name(taxon.name).split(" ")[0]


def resolve_family(taxon: Taxon, lookup: Optional[TaxonLookup] = None) -> tuple[str, bool]:
    """Return ``(family, used_fallback)``.

    Order of preference: family rank in the ancestry, family rank in a fresh
    lookup of the full taxon, an ``-aceae`` ancestor, the static genus table,
    then order or class, then the kingdom.
    """
    family = taxon.ancestor("family")
    if family:
        return family.name, False

    ancestors = list(taxon.ancestors)
    if lookup is not None and taxon.id is not None:
        logger.info("Fetching complete taxonomy for %s", taxon.name)
        try:
            full = lookup(taxon.id)
        except Exception as exc:
            logger.warning("Taxon lookup failed for %s: %s", taxon.name, exc)
        else:
            family = full.ancestor("family")
            if family:
                return family.name, False
            ancestors = list(full.ancestors) or ancestors

    likely = next((a for a in ancestors if a.name.endswith("aceae")), None)
    if likely:
        return likely.name, True

    genus = resolve_genus(taxon).lower()
    if genus in GENUS_FAMILIES:
        return GENUS_FAMILIES[genus], True

    logger.warning("No family found for %s, using order or class", taxon.name)
    for rank in ("order", "class"):
        found = next((a for a in ancestors if a.rank == rank), None)
        if found:
            return f"{found.name} ({rank.title()})", True
    return KINGDOM_FALLBACK, True


# ── Description & Photos ─────────────────────────────────────────────


def extract_description(observation: Observation) -> str:
    """Observer description plus habitat/substrate/host-style annotations."""
    description = (observation.description or "").strip()

    context = "; ".join(
        f"{f.name}: {f.value}"
        for f in observation.ofvs
        if f.value and any(k in f.name.lower() for k in CONTEXT_FIELD_KEYWORDS)
    )
    if context:
        description = f"{description.rstrip('.')}. {context}" if description else context

    return description or NO_DESCRIPTION


def usable_photos(observation: Observation) -> list[Photo]:
    """Photos that carry a URL, largest first."""
    return sorted(
        (p for p in observation.photos if p.url),
        key=lambda p: p.width,
        reverse=True,
    )


def photo_records(photos: list[Photo]) -> list[SpecimenPhoto]:
    """Display records for the specimen_photos table; the first is primary."""
    records = []
    for i, photo in enumerate(photos):
        dims = photo.original_dimensions
        records.append(
            SpecimenPhoto(
                inaturalist_photo_id=str(photo.id),
                photo_url=photo.url.replace("square", "medium"),
                is_primary=i == 0,
                width=dims.width if dims else None,
                height=dims.height if dims else None,
            )
        )
    return records


# ── Specimen ─────────────────────────────────────────────────────────


def build_specimen(
    observation: Observation,
    has_dna: bool,
    score: float,
    lookup: Optional[TaxonLookup] = None,
) -> tuple[Specimen, bool]:
    """Build the Specimen row. Returns ``(specimen, used_family_fallback)``."""
    taxon = observation.taxon
    family, used_fallback = resolve_family(taxon, lookup)
    specimen = Specimen(
        species_name=normalize_species_name(taxon.name),
        genus=resolve_genus(taxon),
        family=family,
        common_name=taxon.preferred_common_name,
        inaturalist_id=str(observation.id),
        location=observation.place_guess or DEFAULT_LOCATION,
        description=extract_description(observation),
        dna_sequenced=has_dna,
        quality_score=score,
        selected_photos=[p.id for p in usable_photos(observation)],
    )
    return specimen, used_fallback
