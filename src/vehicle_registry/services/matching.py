"""Matching strategies that propose canonical pairs for uncurated pairs."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from rapidfuzz import fuzz

from ..domain.entities.hierarchy import CanonicalModel, Hierarchy
from ..domain.entities.mapping import UncuratedPair
from ..utils.common import norm


@dataclass(frozen=True)
class MatchCandidate:
    """A canonical leaf proposed for an uncurated pair, with a 0.0-1.0 score."""

    canonical: CanonicalModel
    score: float
    method: str

    def __post_init__(self):
        if not (0.0 <= self.score <= 1.0):
            raise ValueError(f"Match score must be between 0.0 and 1.0: {self.score}")


class MatchingStrategy(ABC):
    """Interface for strategies that populate Mappings."""

    name: str = "base"

    @abstractmethod
    def suggest(self, pair: UncuratedPair, hierarchy: Hierarchy, limit: int = 5) -> List[MatchCandidate]:
        """Ranked candidates for a pair, best first."""
        pass

    def match(self, pair: UncuratedPair, hierarchy: Hierarchy) -> Optional[MatchCandidate]:
        """Best candidate accepted by this strategy, or None."""
        candidates = self.suggest(pair, hierarchy, limit=1)
        return candidates[0] if candidates else None


class ExactMatchStrategy(MatchingStrategy):
    """Ordinal (make, model) text equality. No case folding."""

    name = "exact"

    def suggest(self, pair: UncuratedPair, hierarchy: Hierarchy, limit: int = 5) -> List[MatchCandidate]:
        canonical = hierarchy.find_model(pair.make_text, pair.model_text)
        if canonical is None:
            return []
        return [MatchCandidate(canonical=canonical, score=1.0, method="exact")]


class FuzzyMatchStrategy(MatchingStrategy):
    """
    Typo-tolerant matching with rapidfuzz.

    Makes are compared with fuzz.ratio on normalized text. Models of every
    make above the make threshold are scored with the better of fuzz.ratio
    and fuzz.partial_ratio, which catches truncated model names. Combined
    score = 0.4 * make + 0.6 * model; ties go to the alphabetically first
    canonical pair.
    """

    name = "fuzzy"

    def __init__(self, make_threshold: float = 80.0, model_threshold: float = 80.0, min_partial_length: int = 4):
        if not (0.0 <= make_threshold <= 100.0) or not (0.0 <= model_threshold <= 100.0):
            raise ValueError("Fuzzy thresholds must be between 0 and 100")
        self.make_threshold = make_threshold
        self.model_threshold = model_threshold
        self.min_partial_length = min_partial_length

    def _model_score(self, uncurated: str, canonical: str) -> float:
        score = fuzz.ratio(uncurated, canonical)
        if min(len(uncurated), len(canonical)) >= self.min_partial_length:
            score = max(score, fuzz.partial_ratio(uncurated, canonical))
        return score

    def suggest(self, pair: UncuratedPair, hierarchy: Hierarchy, limit: int = 5) -> List[MatchCandidate]:
        exact = hierarchy.find_model(pair.make_text, pair.model_text)
        if exact is not None:
            return [MatchCandidate(canonical=exact, score=1.0, method="exact")]

        make_text = norm(pair.make_text)
        model_text = norm(pair.model_text)

        scored = []
        for make in hierarchy.makes:
            make_score = 100.0 if norm(make.name) == make_text else fuzz.ratio(make_text, norm(make.name))
            if make_score < self.make_threshold:
                continue
            for model in make.models:
                model_score = self._model_score(model_text, norm(model.name))
                if model_score < self.model_threshold:
                    continue
                combined = (0.4 * make_score + 0.6 * model_score) / 100.0
                scored.append((combined, model))

        scored.sort(key=lambda item: (-item[0], item[1].make, item[1].name))
        return [
            MatchCandidate(canonical=model, score=round(min(score, 1.0), 4), method="fuzzy")
            for score, model in scored[:limit]
        ]
