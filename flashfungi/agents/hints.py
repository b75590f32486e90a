"""Species hint generation via a hosted Ollama model, with template fallback."""

import json
import logging
import re
from typing import Any

import ollama
from pydantic import ValidationError

from flashfungi.agents.models import (
    HINT_TYPES,
    Hint,
    HintDraft,
    HintResponse,
    SpeciesHintSet,
    Specimen,
)
from flashfungi.agents.taxonomy import NO_DESCRIPTION
from flashfungi.core.config import LLMSettings

logger = logging.getLogger(__name__)

MODEL = "gpt-oss:20b"
TEMPLATE_MODEL = "template"

AI_CONFIDENCE = 0.85
PARTIAL_CONFIDENCE = 0.75
TEMPLATE_CONFIDENCE = 0.6

SYSTEM_PROMPT = (
    "You are a mycological expert. Create precise, educational hints for "
    "mushroom identification that encourage observation and comparison "
    "skills. Respond ONLY with the requested JSON."
)

# "1. **MORPHOLOGICAL:** text" -> ("MORPHOLOGICAL", "text")
_LABEL_RE = re.compile(r"^\s*(?:\d+[.)]\s*)?[*_#\s]*([A-Za-z]+)[*_]*\s*:[*_]*\s*(.*)$")


# ── Prompt Builder ───────────────────────────────────────────────────


def build_hint_prompt(specimen: Specimen) -> str:
    """Build the enrichment prompt for one species."""
    return f"""Create 4 educational identification hints for the mushroom species: {specimen.species_name}

The hints should help students learn to identify this species through observation
and comparison. Create hints in this order:

1. MORPHOLOGICAL: Physical features (cap shape/color/texture, stem characteristics, gills/pores details, spore print color, size ranges)
2. COMPARATIVE: How to distinguish from similar species or potential look-alikes - be specific about differences
3. ECOLOGICAL: Habitat preferences, substrate, seasonal patterns, geographic range, mycorrhizal associations
4. TAXONOMIC: Family ({specimen.family}) and genus characteristics that define this group (use as last resort hint)

Each hint should be 1-3 sentences and focus on distinguishing characteristics that aid
field identification. Do not reveal the species name or genus in hints 1-3.

Species: {specimen.species_name}
Family: {specimen.family}
Observer Description: {specimen.description}

Respond with JSON only:
{{"hints": [{{"level": 1, "type": "morphological", "text": "..."}},
           {{"level": 2, "type": "comparative", "text": "..."}},
           {{"level": 3, "type": "ecological", "text": "..."}},
           {{"level": 4, "type": "taxonomic", "text": "..."}}]}}"""


# ── Deterministic Fallback ───────────────────────────────────────────


def fallback_hint(hint_type: str, specimen: Specimen) -> Hint:
    """Template hint for one level, built from the specimen's own fields."""
    genus = specimen.genus
    if hint_type == "morphological":
        text = (
            f"Examine the cap, stem, and gill or pore characteristics of this {genus} "
            "species. Look for cap shape, surface texture, gill attachment, and spore "
            "print color."
        )
    elif hint_type == "comparative":
        text = (
            f"Compare this specimen to other {genus} species. Size, color variations, "
            "habitat preferences, and microscopic characters often separate look-alikes."
        )
    elif hint_type == "ecological":
        if specimen.description and specimen.description != NO_DESCRIPTION:
            text = f"Consider where it was found: {specimen.description}"
        else:
            text = (
                "Consider the ecological niche: substrate, seasonal occurrence, and "
                "mycorrhizal or saprotrophic relationships."
            )
    else:
        text = f"This belongs to family {specimen.family}."
    return Hint.of(hint_type, text)


def template_hint_set(specimen: Specimen) -> SpeciesHintSet:
    """Complete four-hint set with no model involvement."""
    return _hint_set(
        specimen,
        [fallback_hint(t, specimen) for t in HINT_TYPES],
        source="template-fallback",
        confidence=TEMPLATE_CONFIDENCE,
        model=TEMPLATE_MODEL,
    )


# ── Response Parsing ─────────────────────────────────────────────────


def parse_hint_response(content: str, specimen: Specimen) -> tuple[list[Hint], int]:
    """Parse model output into four ordered hints.

    Tries the JSON schema first, then any well-formed entries of a JSON reply
    that failed the schema, then ``LABEL: text`` lines. Missing levels are
    filled from :func:`fallback_hint`. Returns ``(hints, n_from_model)``.
    """
    found: dict[str, str] = {}
    try:
        response = HintResponse.model_validate_json(content)
        found = {d.type: d.text for d in response.hints}
    except ValidationError:
        logger.warning("Hint response failed schema validation; salvaging entries")
        found = _parse_json_entries(content) or _parse_labels(content)

    hints = []
    for hint_type in HINT_TYPES:
        text = (found.get(hint_type) or "").strip()
        hints.append(Hint.of(hint_type, text) if text else fallback_hint(hint_type, specimen))
    return hints, sum(1 for t in HINT_TYPES if (found.get(t) or "").strip())


def _parse_json_entries(content: str) -> dict[str, str]:
    """Valid ``{level, type, text}`` entries from a JSON reply, first per type."""
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return {}
    entries = data.get("hints") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        return {}

    found: dict[str, str] = {}
    for entry in entries:
        try:
            draft = HintDraft.model_validate(entry)
        except ValidationError:
            continue
        if draft.text.strip():
            found.setdefault(draft.type, draft.text)
    return found


def _parse_labels(content: str) -> dict[str, str]:
    found: dict[str, str] = {}
    for line in content.splitlines():
        match = _LABEL_RE.match(line)
        if not match:
            continue
        label = match.group(1).lower()
        if label in HINT_TYPES and label not in found:
            found[label] = match.group(2).strip(" *_")
    return found


# ── Generator ────────────────────────────────────────────────────────


class HintGenerator:
    """Produces a SpeciesHintSet for a specimen; never raises, never returns empty."""

    def __init__(self, client: Any = None, model: str = MODEL, temperature: float = 0.3):
        self.client = client or ollama.Client()
        self.model = model
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings: LLMSettings) -> "HintGenerator":
        headers = {}
        api_key = settings.api_key()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        client = ollama.Client(host=settings.host, headers=headers)
        return cls(client=client, model=settings.model, temperature=settings.temperature)

    def generate(self, specimen: Specimen) -> SpeciesHintSet:
        prompt = build_hint_prompt(specimen)
        try:
            content = self._chat(prompt)
        except Exception as exc:
            # Network, auth and quota errors all end up here; no retry
            logger.warning(
                "Hint generation failed for %s, using templates: %s",
                specimen.species_name,
                exc,
            )
            return template_hint_set(specimen)

        hints, from_model = parse_hint_response(content, specimen)
        if from_model == 0:
            logger.warning("No usable hints in response for %s", specimen.species_name)
            return template_hint_set(specimen)
        if from_model < len(HINT_TYPES):
            logger.info(
                "Filled %d missing hint(s) for %s from templates",
                len(HINT_TYPES) - from_model,
                specimen.species_name,
            )
        return _hint_set(
            specimen,
            hints,
            source="ai-generated",
            confidence=AI_CONFIDENCE if from_model == len(HINT_TYPES) else PARTIAL_CONFIDENCE,
            model=self.model,
        )

    def _chat(self, prompt: str) -> str:
        response = self.client.chat(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            format=HintResponse.model_json_schema(),
            options={"temperature": self.temperature},
        )
        return response.message.content or ""


def _hint_set(
    specimen: Specimen,
    hints: list[Hint],
    source: str,
    confidence: float,
    model: str,
) -> SpeciesHintSet:
    return SpeciesHintSet(
        species_name=specimen.species_name,
        genus=specimen.genus,
        family=specimen.family,
        common_name=specimen.common_name,
        hints=hints,
        source=source,
        confidence=confidence,
        model=model,
    )
