"""
Tests for ProjectMatcher.

Tests cover:
1. Text normalization
2. Alias and fuzzy matching layers
3. Threshold, archive and tie-break handling
4. Learning aliases from user corrections
"""

from datetime import datetime

import pytest

from clarity.models.project import MatchType, Project, initial_aliases
from clarity.services.project_matcher import ALIAS_CONFIDENCE, ProjectMatcher, normalize


def make_project(name: str, aliases=None, **kwargs) -> Project:
    return Project(
        id=f"proj_{name.lower().replace(' ', '')}",
        name=name,
        aliases=list(aliases if aliases is not None else initial_aliases(name)),
        **kwargs,
    )


@pytest.fixture
def matcher() -> ProjectMatcher:
    return ProjectMatcher()


@pytest.mark.unit
class TestNormalize:
    def test_lowercases_and_strips_punctuation(self):
        assert normalize("Update: StockAlarm, pricing-page!") == "update stockalarm pricing page"

    def test_drops_possessives_and_diacritics(self):
        assert normalize("Café’s Menu") == "cafe menu"

    def test_empty(self):
        assert normalize("  ...  ") == ""


@pytest.mark.unit
class TestFindMatch:
    """Test find_match."""

    def test_alias_substring_match(self, matcher):
        """Project name appearing in the text matches above threshold."""
        project = make_project("StockAlarm", aliases=["stock alarm", "SA"])

        match = matcher.find_match("update StockAlarm pricing page", [project])

        assert match is not None
        assert match.project.id == project.id
        assert match.match_type == MatchType.ALIAS
        assert match.confidence == ALIAS_CONFIDENCE
        assert match.confidence >= matcher.auto_assign_threshold

    def test_multi_word_alias_match(self, matcher):
        project = make_project("StockAlarm", aliases=["stock alarm"])

        match = matcher.find_match("Call about the Stock Alarm launch", [project])

        assert match is not None
        assert match.match_type == MatchType.ALIAS

    def test_deterministic(self, matcher):
        projects = [
            make_project("Website Redesign"),
            make_project("Mobile App"),
            make_project("Hiring"),
        ]
        text = "review the website copy before the mobile app demo"

        first = matcher.find_match(text, projects)
        second = matcher.find_match(text, projects)

        assert first == second

    def test_below_threshold_returns_none(self, matcher):
        projects = [make_project("Website Redesign"), make_project("Hiring")]
        assert matcher.find_match("buy groceries and walk the dog", projects) is None

    def test_fuzzy_match(self, matcher):
        project = make_project("Website Redesign", aliases=[])

        match = matcher.find_match("website copy review", [project])

        assert match is not None
        assert match.match_type == MatchType.FUZZY
        assert match.confidence == pytest.approx(0.625)
        assert match.needs_confirmation is True
        assert match.confidence < ALIAS_CONFIDENCE

    def test_alias_outranks_fuzzy(self, matcher):
        fuzzy = make_project("Website Redesign", aliases=[])
        exact = make_project("Marketing", aliases=["website"])

        match = matcher.find_match("work on the website today", [fuzzy, exact])

        assert match.project.id == exact.id
        assert match.match_type == MatchType.ALIAS

    def test_longer_alias_wins(self, matcher):
        short = make_project("Planning", aliases=["planning"])
        specific = make_project("Q3", aliases=["q3 planning"])

        match = matcher.find_match("q3 planning session notes", [short, specific])

        assert match.project.id == specific.id

    def test_tie_breaks_toward_recent_activity(self, matcher):
        older = make_project("Launch A", aliases=["launch"], last_activity_at=datetime(2024, 5, 1))
        recent = make_project("Launch B", aliases=["launch"], last_activity_at=datetime(2024, 6, 1))

        assert matcher.find_match("launch checklist", [older, recent]).project.id == recent.id
        assert matcher.find_match("launch checklist", [recent, older]).project.id == recent.id

    def test_archived_projects_ignored(self, matcher):
        project = make_project("StockAlarm", is_archived=True)
        assert matcher.find_match("StockAlarm pricing", [project]) is None

    def test_empty_inputs(self, matcher):
        assert matcher.find_match("", [make_project("StockAlarm")]) is None
        assert matcher.find_match("StockAlarm", []) is None

    def test_custom_threshold(self):
        strict = ProjectMatcher(auto_assign_threshold=0.9)
        project = make_project("Website Redesign", aliases=[])

        assert strict.find_match("website copy review", [project]) is None

    def test_high_confidence(self, matcher):
        project = make_project("StockAlarm")
        match = matcher.find_match("StockAlarm", [project])
        assert matcher.is_high_confidence(match)
        assert match.needs_confirmation is False


@pytest.mark.unit
class TestLearnFromCorrection:
    """Test alias learning."""

    def test_adds_inferred_name(self, matcher):
        project = make_project("Stock Alarm")

        added = matcher.learn_from_correction(
            "pricing ideas for the alerts app", project, inferred_name="Alerts"
        )

        assert "alerts" in added
        assert "alerts" in project.aliases
        # The name-derived aliases stay in front
        assert project.aliases[:3] == ["stock alarm", "stockalarm", "sa"]

    def test_idempotent(self, matcher):
        project = make_project("Stock Alarm")
        text = "pricing ideas for the alerts app"

        matcher.learn_from_correction(text, project, inferred_name="Alerts")
        after_first = list(project.aliases)
        added = matcher.learn_from_correction(text, project, inferred_name="Alerts")

        assert added == []
        assert project.aliases == after_first

    def test_case_insensitive_duplicate_skipped(self, matcher):
        project = make_project("Stock Alarm", aliases=["stock alarm", "Alerts"])

        matcher.learn_from_correction("", project, inferred_name="ALERTS")

        assert [a.lower() for a in project.aliases].count("alerts") == 1

    def test_evicts_oldest_non_name_alias(self):
        matcher = ProjectMatcher(max_aliases=3)
        project = make_project("Stock Alarm")

        added = matcher.learn_from_correction("", project, inferred_name="Alerts")

        assert added == ["alerts"]
        assert project.aliases == ["stock alarm", "sa", "alerts"]

    def test_nothing_evictable(self):
        matcher = ProjectMatcher(max_aliases=1)
        project = make_project("Stock Alarm", aliases=["stock alarm"])

        assert matcher.learn_from_correction("", project, inferred_name="Alerts") == []
        assert project.aliases == ["stock alarm"]

    def test_learned_alias_matches_afterwards(self, matcher):
        project = make_project("Stock Alarm")
        assert matcher.find_match("alerts pricing", [project]) is None

        matcher.learn_from_correction("", project, inferred_name="Alerts")

        match = matcher.find_match("alerts pricing", [project])
        assert match is not None
        assert match.project.id == project.id

    def test_context_words_become_candidates(self, matcher):
        project = make_project("Stock Alarm")

        candidates = matcher.alias_candidates("notes regarding pricing tiers", project)

        assert "pricing" in candidates
        assert "regarding" not in candidates

    def test_common_words_never_learned(self, matcher):
        project = make_project("Stock Alarm")
        assert matcher.alias_candidates("", project, inferred_name="the") == []
