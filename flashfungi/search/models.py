"""Shared data models for iNaturalist observation records."""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class TaxonRef(BaseModel):
    """A taxon as it appears in an ancestry chain."""

    id: Optional[int] = None
    name: str
    rank: Optional[str] = None


class Taxon(TaxonRef):
    """An observation's taxon with its common name and ancestry."""

    preferred_common_name: Optional[str] = None
    ancestors: list[TaxonRef] = Field(default_factory=list)

    def ancestor(self, rank: str) -> Optional[TaxonRef]:
        """The ancestor at ``rank``, or the taxon itself if it has that rank."""
        if self.rank == rank:
            return self
        return next((a for a in self.ancestors if a.rank == rank), None)


class ObservationField(BaseModel):
    """A user-supplied name/value annotation (iNaturalist "ofv")."""

    name: str
    value: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def stringify(cls, v):
        if v is None or isinstance(v, str):
            return v
        return str(v)


class Comment(BaseModel):
    body: str = ""


class PhotoDimensions(BaseModel):
    width: Optional[int] = None
    height: Optional[int] = None


class Photo(BaseModel):
    id: int
    url: Optional[str] = None
    original_dimensions: Optional[PhotoDimensions] = None

    @property
    def width(self) -> int:
        if self.original_dimensions and self.original_dimensions.width:
            return self.original_dimensions.width
        return 0


class Observation(BaseModel):
    """A single citizen-science sighting, read-only input to the pipeline."""

    id: int
    taxon: Taxon
    description: Optional[str] = None
    ofvs: list[ObservationField] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)
    photos: list[Photo] = Field(default_factory=list)
    quality_grade: Optional[str] = None
    num_identification_agreements: int = 0
    observed_on: Optional[date] = None
    place_guess: Optional[str] = None
    raw_data: dict = Field(default_factory=dict)

    @field_validator("ofvs", "comments", "photos", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []

    @field_validator("num_identification_agreements", mode="before")
    @classmethod
    def none_to_zero(cls, v):
        return v or 0

    @field_validator("observed_on", mode="before")
    @classmethod
    def blank_date(cls, v):
        # The API occasionally returns "" for undated observations
        return v or None

    @classmethod
    def from_api(cls, record: dict) -> "Observation":
        return cls.model_validate({**record, "raw_data": record})


class FetchFailure(BaseModel):
    """Stand-in for an observation whose detail fetch failed."""

    observation_id: int
    reason: str
