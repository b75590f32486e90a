"""Shared data models for specimens and species hint sets."""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

HintType = Literal["morphological", "comparative", "ecological", "taxonomic"]
EducationalValue = Literal["high", "medium", "low"]

# Presentation order; level = index + 1
HINT_TYPES: tuple[str, ...] = ("morphological", "comparative", "ecological", "taxonomic")

EDUCATIONAL_VALUE: dict[str, str] = {
    "morphological": "high",
    "comparative": "high",
    "ecological": "medium",
    "taxonomic": "low",
}

SPECIMEN_STATUSES = ("pending", "approved", "rejected")
HINT_SOURCES = ("ai-generated", "template-fallback")


# ── Hints ────────────────────────────────────────────────────────────


class Hint(BaseModel):
    """One leveled identification hint. Level and tier follow from the type."""

    type: HintType
    level: int = Field(ge=1, le=4)
    text: str = Field(min_length=1)
    educational_value: EducationalValue

    @model_validator(mode="after")
    def consistent_level(self) -> "Hint":
        if self.level != HINT_TYPES.index(self.type) + 1:
            raise ValueError(f"{self.type} hints must have level {HINT_TYPES.index(self.type) + 1}")
        if self.educational_value != EDUCATIONAL_VALUE[self.type]:
            raise ValueError(
                f"{self.type} hints must have educational value {EDUCATIONAL_VALUE[self.type]}"
            )
        return self

    @classmethod
    def of(cls, hint_type: str, text: str) -> "Hint":
        return cls(
            type=hint_type,
            level=HINT_TYPES.index(hint_type) + 1,
            text=text.strip(),
            educational_value=EDUCATIONAL_VALUE[hint_type],
        )


class SpeciesHintSet(BaseModel):
    """The cached hint bundle shared by every specimen of one species."""

    species_name: str
    genus: Optional[str] = None
    family: Optional[str] = None
    common_name: Optional[str] = None
    hints: list[Hint]
    source: Literal["ai-generated", "template-fallback"]
    confidence: float = Field(ge=0.0, le=1.0)
    admin_reviewed: bool = False
    model: Optional[str] = None

    @field_validator("hints")
    @classmethod
    def four_ordered_levels(cls, v: list[Hint]) -> list[Hint]:
        if tuple(h.type for h in v) != HINT_TYPES:
            raise ValueError(f"Hint set must contain exactly {', '.join(HINT_TYPES)} in order")
        return v


# ── LLM Structured Output ────────────────────────────────────────────


class HintDraft(BaseModel):
    level: int = Field(ge=1, le=4)
    type: HintType
    text: str = Field(min_length=1, description="1-3 sentence hint")


class HintResponse(BaseModel):
    """Schema the language model is asked to fill."""

    hints: list[HintDraft] = Field(min_length=4, max_length=4)

    @field_validator("hints")
    @classmethod
    def one_per_type(cls, v: list[HintDraft]) -> list[HintDraft]:
        if sorted(h.type for h in v) != sorted(HINT_TYPES):
            raise ValueError("Response must contain each hint type exactly once")
        return v


# ── Specimens ────────────────────────────────────────────────────────


class Specimen(BaseModel):
    """Curated record derived from one accepted observation."""

    species_name: str
    genus: str
    family: str
    common_name: Optional[str] = None
    inaturalist_id: str
    location: str
    description: str
    dna_sequenced: bool
    quality_score: float = Field(ge=0.0, le=1.0)
    status: Literal["pending", "approved", "rejected"] = "pending"
    selected_photos: list[int] = Field(default_factory=list)


class SpecimenPhoto(BaseModel):
    inaturalist_photo_id: str
    photo_url: str
    is_primary: bool = False
    width: Optional[int] = None
    height: Optional[int] = None
