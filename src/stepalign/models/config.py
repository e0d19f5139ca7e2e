"""
Pydantic configuration models for stepalign.

These models define the alignment scoring used for the distance matrix and
the seed alignment, the insertion engine settings, and the external ancestral
state reconstruction call. Configuration can be loaded from YAML files or
CLI arguments.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal, Self

from pydantic import BaseModel, Field, field_validator, model_validator

from stepalign.core.constants import (
    DEFAULT_BACKGROUND_FREQS,
    DEFAULT_BRANCH_LENGTH,
    DISTANCE_GAP_EXTEND,
    DISTANCE_GAP_OPEN,
    FREESHIFT_GAP_EXTEND,
    FREESHIFT_GAP_OPEN,
    MATCH_SCORE,
    MISMATCH_SCORE,
    RAXML_DEFAULT_MODEL,
    RAXML_DEFAULT_RUN_NAME,
    RAXML_DEFAULT_SEED,
)

logger = logging.getLogger(__name__)


class AlignmentScoringConfig(BaseModel):
    """
    Scoring for the two pairwise alignment primitives.

    The all-pairs distance matrix uses a global affine alignment with the
    distance gap penalties. The seed quartet uses a free-end-gap alignment
    with the freeshift penalties.
    """

    match_score: float = Field(default=MATCH_SCORE, description="Score for identical residues")
    mismatch_score: float = Field(default=MISMATCH_SCORE, description="Score for differing residues")
    distance_gap_open: float = Field(
        default=DISTANCE_GAP_OPEN,
        le=0,
        description="Gap open score for all-pairs distance alignments",
    )
    distance_gap_extend: float = Field(
        default=DISTANCE_GAP_EXTEND,
        le=0,
        description="Gap extension score for all-pairs distance alignments",
    )
    freeshift_gap_open: float = Field(
        default=FREESHIFT_GAP_OPEN,
        le=0,
        description="Gap open score for the seed freeshift alignment",
    )
    freeshift_gap_extend: float = Field(
        default=FREESHIFT_GAP_EXTEND,
        le=0,
        description="Gap extension score for the seed freeshift alignment",
    )

    @model_validator(mode="after")
    def validate_match_dominates(self) -> Self:
        """Matches must score above mismatches or distances are meaningless."""
        if self.match_score <= self.mismatch_score:
            msg = (
                f"match_score ({self.match_score}) must be greater than "
                f"mismatch_score ({self.mismatch_score})"
            )
            raise ValueError(msg)
        return self

    model_config = {"frozen": True}


class InsertionConfig(BaseModel):
    """
    Settings of the stepwise insertion loop.

    Attributes:
        vector_model: Ancestral vector representation used for every newview
            of a run ("probgap" or "parsimony"). Never mixed within a run.
        background_freqs: A, C, G, T background frequencies for log-odds.
        default_branch_length: Length of seed quartet edges and of the
            pendant edge of a newly inserted sequence.
        incremental: Reuse ancestral vectors between attachment candidates.
        max_insertions: Stop after this many insertions (None = all).
    """

    vector_model: Literal["probgap", "parsimony"] = Field(
        default="probgap",
        description="Ancestral vector representation used during the run",
    )
    background_freqs: tuple[float, float, float, float] = Field(
        default=DEFAULT_BACKGROUND_FREQS,
        description="Background A, C, G, T frequencies for log-odds scores",
    )
    default_branch_length: float = Field(
        default=DEFAULT_BRANCH_LENGTH,
        gt=0,
        description="Branch length for seed edges and new pendant edges",
    )
    incremental: bool = Field(
        default=True,
        description="Skip ancestral vectors that are unchanged between splices",
    )
    max_insertions: int | None = Field(
        default=None,
        ge=0,
        description="Maximum number of sequences to insert (None = all)",
    )

    @field_validator("background_freqs")
    @classmethod
    def validate_background_freqs(
        cls, value: tuple[float, float, float, float]
    ) -> tuple[float, float, float, float]:
        """Frequencies must be positive and sum to approximately 1.0."""
        if any(f <= 0 for f in value):
            msg = f"Background frequencies must be positive, got {value}"
            raise ValueError(msg)
        total = sum(value)
        if abs(total - 1.0) > 0.01:
            msg = f"Background frequencies must sum to 1.0, got {total:.4f}"
            raise ValueError(msg)
        return value

    model_config = {"frozen": True}


class RAxMLConfig(BaseModel):
    """Configuration of the external marginal ancestral state reconstruction."""

    model: str = Field(
        default=RAXML_DEFAULT_MODEL,
        description="Substitution model passed to raxmlHPC -m",
    )
    seed: int = Field(default=RAXML_DEFAULT_SEED, ge=1, description="Parsimony random seed (-p)")
    run_name: str = Field(
        default=RAXML_DEFAULT_RUN_NAME,
        pattern=r"^[\w.\-]+$",
        description="Run name (-n); output files are suffixed with it",
    )
    timeout: float | None = Field(
        default=None,
        gt=0,
        description="Timeout in seconds for one reconstruction (None = no limit)",
    )

    model_config = {"frozen": True}


class StepalignConfig(BaseModel):
    """Top-level configuration for a stepwise insertion run."""

    scoring: AlignmentScoringConfig = Field(default_factory=AlignmentScoringConfig)
    insertion: InsertionConfig = Field(default_factory=InsertionConfig)
    raxml: RAxMLConfig = Field(default_factory=RAxMLConfig)
    alignment_threads: int = Field(
        default=1,
        ge=1,
        description="Worker threads for the all-pairs score matrix",
    )
    newview_threads: int = Field(
        default=1,
        ge=1,
        description="Worker threads for newview (accepted, currently unused)",
    )

    @classmethod
    def from_yaml(cls, path: Path) -> StepalignConfig:
        """
        Load configuration from a YAML file.

        Sections (scoring, insertion, raxml) map to the nested models.
        Unknown keys are ignored (forward compatibility).

        Raises:
            FileNotFoundError: If the YAML file does not exist.
            ValueError: If the YAML content is not a mapping or holds
                invalid values.
        """
        import yaml

        raw = yaml.safe_load(path.read_text())
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            msg = f"YAML config must be a mapping, got {type(raw).__name__}"
            raise ValueError(msg)

        return cls(**_known_sections(raw))

    def to_yaml(self, path: Path) -> None:
        """Write the configuration to a YAML file."""
        path.write_text(self.to_yaml_string())

    def to_yaml_string(self) -> str:
        import yaml

        data = self.model_dump(mode="json")
        return yaml.dump(data, default_flow_style=False, sort_keys=False)

    def with_overrides(self, **overrides: Any) -> StepalignConfig:
        """Return a copy with CLI overrides applied; None values are skipped.

        Keys of the form "section.field" address nested models.
        """
        top: dict[str, Any] = {}
        nested: dict[str, dict[str, Any]] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if "." in key:
                section, field = key.split(".", 1)
                nested.setdefault(section, {})[field] = value
            else:
                top[key] = value

        for section, values in nested.items():
            current = getattr(self, section)
            top[section] = current.model_validate({**current.model_dump(), **values})

        return self.model_validate({**self.model_dump(), **top})

    model_config = {"frozen": True}


def _known_sections(raw: dict[str, Any]) -> dict[str, Any]:
    """Keep only keys that StepalignConfig and its sections understand."""
    sections = {
        "scoring": AlignmentScoringConfig,
        "insertion": InsertionConfig,
        "raxml": RAxMLConfig,
    }
    result: dict[str, Any] = {}
    for key, value in raw.items():
        if key in sections:
            if not isinstance(value, dict):
                msg = f"Section '{key}' must be a mapping, got {type(value).__name__}"
                raise ValueError(msg)
            model = sections[key]
            result[key] = {k: v for k, v in value.items() if k in model.model_fields}
        elif key in StepalignConfig.model_fields:
            result[key] = value
        else:
            logger.debug("Ignoring unknown config key: %s", key)
    return result
