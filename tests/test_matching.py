import pytest

from vehicle_registry.domain.entities.hierarchy import CanonicalMake, CanonicalModel, Hierarchy
from vehicle_registry.domain.entities.mapping import UncuratedPair
from vehicle_registry.services.matching import (
    ExactMatchStrategy, FuzzyMatchStrategy, MatchCandidate
)


def make_hierarchy(tree):
    return Hierarchy(makes=tuple(
        CanonicalMake(name=make, models=tuple(CanonicalModel(make=make, name=model) for model in models))
        for make, models in sorted(tree.items())
    ))


HIERARCHY = make_hierarchy({
    "CITROEN": ["C4"],
    "HONDA": ["ACCORD", "CIVIC"],
    "VOLVO": ["XC60", "XC90"],
})


def pair(make, model):
    return UncuratedPair(make_id=1, model_id=1, make_text=make, model_text=model)


class TestExactMatchStrategy:

    def test_matches_identical_text_only(self):
        strategy = ExactMatchStrategy()
        candidate = strategy.match(pair("HONDA", "CIVIC"), HIERARCHY)
        assert candidate.canonical.key == ("HONDA", "CIVIC")
        assert candidate.score == 1.0

        assert strategy.match(pair("HONDA", "civic"), HIERARCHY) is None
        assert strategy.match(pair("VOLV0", "XC60"), HIERARCHY) is None


class TestFuzzyMatchStrategy:

    def test_exact_text_wins_outright(self):
        candidate = FuzzyMatchStrategy().match(pair("VOLVO", "XC90"), HIERARCHY)
        assert candidate.method == "exact"
        assert candidate.canonical.key == ("VOLVO", "XC90")

    def test_truncated_model_name(self):
        candidate = FuzzyMatchStrategy().match(pair("HONDA", "CIVI"), HIERARCHY)
        assert candidate.canonical.key == ("HONDA", "CIVIC")
        assert candidate.method == "fuzzy"

    def test_accents_and_case_are_ignored(self):
        candidate = FuzzyMatchStrategy().match(pair("Citroën", "c4"), HIERARCHY)
        assert candidate.canonical.key == ("CITROEN", "C4")

    def test_unrelated_pair_has_no_match(self):
        assert FuzzyMatchStrategy().match(pair("NOVA", "LFS"), HIERARCHY) is None

    def test_suggestions_best_first(self):
        suggestions = FuzzyMatchStrategy(make_threshold=70.0, model_threshold=70.0).suggest(
            pair("VOLV0", "XC6O"), HIERARCHY, limit=5
        )
        assert [s.canonical.key for s in suggestions][0] == ("VOLVO", "XC60")
        scores = [s.score for s in suggestions]
        assert scores == sorted(scores, reverse=True)

    def test_thresholds_are_validated(self):
        with pytest.raises(ValueError):
            FuzzyMatchStrategy(make_threshold=120.0)


class TestMatchCandidate:

    def test_score_must_be_a_fraction(self):
        with pytest.raises(ValueError):
            MatchCandidate(canonical=CanonicalModel(make="HONDA", name="CIVIC"), score=1.5, method="fuzzy")
