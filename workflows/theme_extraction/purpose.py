"""Research purpose presets.

A purpose controls how many themes extraction aims for, how finely codes are
grouped, and how strict the review merge threshold is.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Literal

Granularity = Literal["fine", "medium", "coarse"]
Rigor = Literal["standard", "rigorous", "publication_ready"]
ExtractionFocus = Literal["breadth", "depth", "saturation"]


class ResearchPurpose(str, Enum):
    """Methodologies the pipeline can be tuned for."""

    Q_METHODOLOGY = "q_methodology"
    SURVEY_CONSTRUCTION = "survey_construction"
    QUALITATIVE_ANALYSIS = "qualitative_analysis"
    LITERATURE_SYNTHESIS = "literature_synthesis"
    HYPOTHESIS_GENERATION = "hypothesis_generation"


@dataclass(frozen=True)
class ResearchPurposeConfig:
    """Read-only profile selected once per extraction request."""

    purpose: str
    target_theme_count: tuple[int, int]
    granularity: Granularity
    similarity_threshold: float
    rigor: Rigor
    extraction_focus: ExtractionFocus = "depth"
    min_sources: int = 2
    description: str = ""
    citation: str = ""

    def __post_init__(self):
        low, high = self.target_theme_count
        if low < 1 or high < low:
            raise ValueError(
                f"Invalid target theme count range {self.target_theme_count} for {self.purpose}"
            )
        if not 0.0 < self.similarity_threshold < 1.0:
            raise ValueError(
                f"similarity_threshold must be in (0, 1), got {self.similarity_threshold}"
            )

    @property
    def min_themes(self) -> int:
        return self.target_theme_count[0]

    @property
    def max_themes(self) -> int:
        return self.target_theme_count[1]


PURPOSE_PRESETS: dict[ResearchPurpose, ResearchPurposeConfig] = {
    ResearchPurpose.Q_METHODOLOGY: ResearchPurposeConfig(
        purpose=ResearchPurpose.Q_METHODOLOGY.value,
        target_theme_count=(30, 80),
        granularity="fine",
        similarity_threshold=0.8,
        rigor="rigorous",
        extraction_focus="breadth",
        min_sources=1,
        description=(
            "Broad concourse of diverse viewpoints for Q-sort statement generation. "
            "Prioritises breadth over depth."
        ),
        citation="Stephenson, W. (1953). The Study of Behavior: Q-Technique and Its Methodology.",
    ),
    ResearchPurpose.SURVEY_CONSTRUCTION: ResearchPurposeConfig(
        purpose=ResearchPurpose.SURVEY_CONSTRUCTION.value,
        target_theme_count=(5, 15),
        granularity="coarse",
        similarity_threshold=0.7,
        rigor="publication_ready",
        extraction_focus="depth",
        min_sources=3,
        description="A small set of robust constructs suitable for scale development.",
        citation="Churchill, G. A. (1979). A paradigm for developing better measures.",
    ),
    ResearchPurpose.QUALITATIVE_ANALYSIS: ResearchPurposeConfig(
        purpose=ResearchPurpose.QUALITATIVE_ANALYSIS.value,
        target_theme_count=(5, 20),
        granularity="medium",
        similarity_threshold=0.75,
        rigor="rigorous",
        extraction_focus="saturation",
        min_sources=2,
        description="Reflexive thematic analysis following the six-phase approach.",
        citation="Braun, V., & Clarke, V. (2006). Using thematic analysis in psychology.",
    ),
    ResearchPurpose.LITERATURE_SYNTHESIS: ResearchPurposeConfig(
        purpose=ResearchPurpose.LITERATURE_SYNTHESIS.value,
        target_theme_count=(10, 25),
        granularity="medium",
        similarity_threshold=0.75,
        rigor="publication_ready",
        extraction_focus="depth",
        min_sources=3,
        description="Synthesis of findings across a body of literature.",
        citation="Thomas, J., & Harden, A. (2008). Methods for the thematic synthesis of qualitative research.",
    ),
    ResearchPurpose.HYPOTHESIS_GENERATION: ResearchPurposeConfig(
        purpose=ResearchPurpose.HYPOTHESIS_GENERATION.value,
        target_theme_count=(8, 15),
        granularity="medium",
        similarity_threshold=0.75,
        rigor="rigorous",
        extraction_focus="depth",
        min_sources=2,
        description="Mechanisms and relationships that can be turned into testable hypotheses.",
        citation="Glaser, B. G., & Strauss, A. L. (1967). The Discovery of Grounded Theory.",
    ),
}


def get_purpose_config(
    purpose: "ResearchPurpose | str | ResearchPurposeConfig",
) -> ResearchPurposeConfig:
    """Resolve a purpose name, enum member or explicit config to a config."""
    if isinstance(purpose, ResearchPurposeConfig):
        return purpose
    try:
        return PURPOSE_PRESETS[ResearchPurpose(purpose)]
    except ValueError:
        valid = ", ".join(p.value for p in ResearchPurpose)
        raise ValueError(f"Unknown research purpose '{purpose}'. Use one of: {valid}") from None
