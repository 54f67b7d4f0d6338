"""Two-stage analysis as an explicit state machine.

    INITIAL --(needs richer context)--> REANALYZE --> FINAL
    INITIAL --(otherwise)-------------> REUSE -----> FINAL

The transition depends only on the stage-1 result, so it can be tested
without calling the model.
"""

from enum import Enum
from typing import Optional

from intent.schema import ALL_AVAILABLE, DATE_BASED_SEARCH, SEMANTIC_SEARCH, IntentAnalysisResult


class Stage(Enum):
    INITIAL = "initial"
    REUSE = "reuse"
    REANALYZE = "reanalyze"
    FINAL = "final"


# Strategies whose decision may change once summaries are visible
REANALYZE_STRATEGIES = frozenset([SEMANTIC_SEARCH, DATE_BASED_SEARCH, ALL_AVAILABLE])


def reanalysis_reason(result: IntentAnalysisResult) -> Optional[str]:
    """Why stage 1 needs a second pass, or None to reuse it."""
    if result.fallback:
        return None
    if result.context_retrieval_strategy in REANALYZE_STRATEGIES:
        return f"strategy {result.context_retrieval_strategy} needs summaries"
    return None


def next_stage(stage: Stage, result: Optional[IntentAnalysisResult] = None) -> Stage:
    """Advance the analysis state machine.

    Raises:
        ValueError: On INITIAL without a stage-1 result, or advancing FINAL
    """
    if stage is Stage.INITIAL:
        if result is None:
            raise ValueError("INITIAL requires the stage-1 result")
        return Stage.REANALYZE if reanalysis_reason(result) else Stage.REUSE
    if stage in (Stage.REUSE, Stage.REANALYZE):
        return Stage.FINAL
    raise ValueError(f"No transition from {stage.value}")
