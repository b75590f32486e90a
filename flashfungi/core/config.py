"""Service settings (YAML) and per-run configuration (environment)."""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

SETTINGS_ENV = "FLASHFUNGI_SETTINGS"
OPERATOR_TOKENS_ENV = "FLASHFUNGI_OPERATOR_TOKENS"

# Lichens and plant pathogens that share the Fungi root but never make good
# flashcards. Keys are display names, values are iNaturalist taxon ids.
EXCLUDED_TAXA: dict[str, int] = {
    "Arthoniomycetes": 152028,
    "Lecanoromycetes": 54743,
    "Lichinomycetes": 152030,
    "Verrucariales": 117869,
    "Phyllostictaceae": 791584,
    "Erysiphaceae": 55525,
}

_TRUE_STRINGS = {"1", "true", "yes", "on"}


# ── Service Settings ─────────────────────────────────────────────────


class INaturalistSettings(BaseModel):
    """Fixed search filter and transport options for the observation fetcher."""

    api_base: str = "https://api.inaturalist.org/v1"
    place_id: int = 40  # Arizona
    taxon_id: int = 47170  # Fungi
    quality_grade: str = "research"
    per_page: int = Field(default=50, ge=1, le=200)
    request_delay: float = Field(default=1.0, ge=1.0, description="Seconds before each request")
    timeout: float = Field(default=30.0, gt=0)
    excluded_taxa: dict[str, int] = Field(default_factory=lambda: dict(EXCLUDED_TAXA))


class LLMSettings(BaseModel):
    """Hosted language-model endpoint used for hint enrichment."""

    host: str = "https://ollama.com"
    model: str = "gpt-oss:20b"
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    api_key_env: str = "OLLAMA_API_KEY"

    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env) or None


class DatabaseSettings(BaseModel):
    path: str = "data/flashfungi.db"


class JobSettings(BaseModel):
    grace_period: float = Field(default=5.0, gt=0)
    recent_log_limit: int = Field(default=50, ge=1)


class APISettings(BaseModel):
    """Operator bearer tokens, mapped token -> operator name."""

    operator_tokens: dict[str, str] = Field(default_factory=dict)


class Settings(BaseModel):
    """Top-level service settings."""

    inaturalist: INaturalistSettings = Field(default_factory=INaturalistSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    jobs: JobSettings = Field(default_factory=JobSettings)
    api: APISettings = Field(default_factory=APISettings)


# ── Run Configuration ────────────────────────────────────────────────


class RunConfig(BaseModel):
    """Options for a single pipeline run.

    Accepts both the snake_case field names and the camelCase names used by
    the job control surface (``minPhotos``, ``requireDNA``, ...).
    """

    model_config = ConfigDict(populate_by_name=True)

    limit: int = Field(default=50, ge=1, le=1000)
    min_photos: int = Field(default=3, ge=1, alias="minPhotos")
    require_dna: bool = Field(default=False, alias="requireDNA")
    auto_approve: bool = Field(default=False, alias="autoApprove")
    excluded_taxa: list[int] = Field(
        default_factory=lambda: list(EXCLUDED_TAXA.values()), alias="excludedTaxa"
    )

    @field_validator("excluded_taxa", mode="before")
    @classmethod
    def split_taxa(cls, v):
        if isinstance(v, str):
            return [int(part) for part in v.split(",") if part.strip()]
        return v

    def to_env(self) -> dict[str, str]:
        """Environment variables read back by :meth:`from_env`."""
        return {
            "LIMIT": str(self.limit),
            "MIN_PHOTOS": str(self.min_photos),
            "REQUIRE_DNA": str(self.require_dna).lower(),
            "AUTO_APPROVE": str(self.auto_approve).lower(),
            "EXCLUDED_TAXA": ",".join(str(t) for t in self.excluded_taxa),
        }

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RunConfig":
        """Build a RunConfig from LIMIT / MIN_PHOTOS / ... variables.

        Unset variables keep their defaults. An empty EXCLUDED_TAXA means no
        exclusions.
        """
        env = os.environ if environ is None else environ
        data: dict = {}
        if env.get("LIMIT"):
            data["limit"] = int(env["LIMIT"])
        if env.get("MIN_PHOTOS"):
            data["min_photos"] = int(env["MIN_PHOTOS"])
        if "REQUIRE_DNA" in env:
            data["require_dna"] = env["REQUIRE_DNA"].strip().lower() in _TRUE_STRINGS
        if "AUTO_APPROVE" in env:
            data["auto_approve"] = env["AUTO_APPROVE"].strip().lower() in _TRUE_STRINGS
        if "EXCLUDED_TAXA" in env:
            data["excluded_taxa"] = env["EXCLUDED_TAXA"]
        return cls.model_validate(data)


# ── Loading ──────────────────────────────────────────────────────────


def parse_operator_tokens(raw: str) -> dict[str, str]:
    """Parse ``token:name,token2:name2``. A bare token maps to "operator"."""
    tokens: dict[str, str] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        token, _, name = item.partition(":")
        tokens[token.strip()] = name.strip() or "operator"
    return tokens


def load_settings(path: str | Path | None = None) -> Settings:
    """Load YAML settings from disk and return a validated model.

    With no path, ``$FLASHFUNGI_SETTINGS`` is used; with neither, the
    built-in defaults apply. Operator tokens from the environment are merged
    over the file's.
    """
    path = path or os.environ.get(SETTINGS_ENV)
    if path:
        with open(Path(path)) as f:
            raw = yaml.safe_load(f) or {}
        settings = Settings.model_validate(raw)
        logger.debug("Loaded settings from %s", path)
    else:
        settings = Settings()

    env_tokens = os.environ.get(OPERATOR_TOKENS_ENV)
    if env_tokens:
        settings.api.operator_tokens.update(parse_operator_tokens(env_tokens))
    return settings
