"""Per-scene quality search

Bisects an encoder's quality range for the value whose metric score best
satisfies a rule against a target. Scoring a candidate is left to the
caller, which encodes and measures through the cache, so an interrupted
search replays its finished candidates from cache on the next run.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .config import QualityRule, RateMode

logger = logging.getLogger(__name__)


class QualityRange:
    """Integer bisection window over ``[minimum, maximum]``"""

    def __init__(self, minimum: int, maximum: int):
        if minimum > maximum:
            raise ValueError(f"Empty quality range {minimum}-{maximum}")
        self.minimum = int(minimum)
        self.maximum = int(maximum)
        self.low = self.minimum
        self.high = self.maximum

    def current(self) -> Optional[int]:
        if self.low > self.high:
            return None
        return (self.low + self.high) // 2

    def higher(self) -> None:
        """Continue above the current value"""
        self.low = self.current() + 1

    def lower(self) -> None:
        """Continue below the current value"""
        self.high = self.current() - 1


@dataclass
class SearchResult:
    quality: int
    score: Optional[float]
    tried: Dict[int, float] = field(default_factory=dict)


def search_score(measurement: Mapping[str, Any]) -> float:
    """The primary metric's percentile score of a scene measurement"""
    return float(measurement["scores"][measurement["metric"]]["percentile"])


def search_quality(evaluate: Callable[[int], float], bounds: Tuple[int, int],
                   rule: QualityRule, target: float, mode: RateMode) -> SearchResult:
    """
    Find the quality value that best satisfies ``rule`` against ``target``.

    In CRF and QP modes a lower value means better fidelity; in bitrate mode
    a higher one does.

    - MINIMUM: cheapest quality whose score is at least ``target``
    - MAXIMUM: best quality whose score is at most ``target``
    - TARGET: the quality whose score lands closest to ``target``

    When no candidate satisfies a MINIMUM or MAXIMUM rule, the end of the
    range favouring the rule is returned.

    Args:
        evaluate: Encodes and scores the scene at one quality value
        bounds: Inclusive quality range
        rule: Acceptance rule
        target: Score the rule compares against
        mode: Rate control mode of the encoder

    Returns:
        SearchResult: Chosen quality, its score when it was evaluated, and
        every evaluated candidate
    """
    window = QualityRange(*bounds)
    bitrate = mode is RateMode.BITRATE
    if rule is QualityRule.MAXIMUM:
        best = window.minimum if bitrate else window.maximum
    else:
        best = window.maximum if bitrate else window.minimum
    best_score: Optional[float] = None
    tried: Dict[int, float] = {}

    while True:
        quality = window.current()
        if quality is None:
            break
        score = evaluate(quality)
        tried[quality] = score
        logger.debug("Candidate quality %d scored %.3f", quality, score)

        if rule is QualityRule.MAXIMUM:
            if score <= target:
                if (quality > best) if bitrate else (quality < best):
                    best, best_score = quality, score
                if bitrate:
                    window.higher()
                else:
                    window.lower()
            elif bitrate:
                window.lower()
            else:
                window.higher()
        elif rule is QualityRule.MINIMUM:
            if score >= target:
                if (quality < best) if bitrate else (quality > best):
                    best, best_score = quality, score
                if bitrate:
                    window.lower()
                else:
                    window.higher()
            elif bitrate:
                window.higher()
            else:
                window.lower()
        else:
            if best_score is None or abs(target - score) < abs(target - best_score):
                best, best_score = quality, score
            if (score <= target) if bitrate else (score >= target):
                window.higher()
            else:
                window.lower()

    if best_score is None and best in tried:
        best_score = tried[best]
    return SearchResult(quality=best, score=best_score, tried=tried)
