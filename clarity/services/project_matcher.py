"""
Project matching: aliases first, then fuzzy token overlap.

Scoring is synchronous and deterministic. An alias or name appearing as a
whole phrase in the text always outranks any partial token overlap.
"""

import re
import unicodedata
from datetime import datetime
from difflib import SequenceMatcher

from clarity.config import MatcherConfig
from clarity.models.project import MatchType, Project, ProjectMatch
from clarity.utils.logger import get_logger

logger = get_logger(__name__)

ALIAS_CONFIDENCE = 0.95
FUZZY_CONFIDENCE_CAP = 0.75
FUZZY_MIN_SCORE = 0.3

COMMON_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
        "be", "have", "has", "had", "do", "does", "did", "will", "would",
        "could", "should", "may", "might", "must", "need", "want", "like",
        "this", "that", "these", "those", "i", "you", "he", "she", "it",
        "we", "they", "my", "your", "his", "her", "its", "our", "their",
        "about", "just", "also", "some", "new", "now", "get", "got", "going",
    }
)  # fmt: skip

CONTEXT_WORDS = frozenset({"for", "about", "regarding"})

_NON_WORD = re.compile(r"[^a-z0-9]+")


def normalize(text: str) -> str:
    """Lowercase, drop possessives and diacritics, turn punctuation into spaces."""
    text = text.lower().replace("’", "'")
    text = text.replace("'s", "").replace("'", "")
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return " ".join(_NON_WORD.sub(" ", text).split())


def _recency(project: Project) -> datetime:
    return project.last_activity_at or datetime.min


def _rank(scored: list[tuple[Project, float]]) -> list[tuple[Project, float]]:
    """Highest score first; ties go to the most recently active, then by name."""
    by_name = sorted(scored, key=lambda item: (item[0].name.lower(), item[0].id))
    return sorted(by_name, key=lambda item: (item[1], _recency(item[0])), reverse=True)


class ProjectMatcher:
    """
    Scores note text against known projects.

    Layers:
    1. Alias: a project alias (or its name) appears as a whole phrase
    2. Fuzzy: token overlap with the name and aliases, capped below alias confidence
    """

    def __init__(
        self,
        auto_assign_threshold: float = 0.6,
        high_confidence_threshold: float = 0.85,
        max_aliases: int = 12,
    ):
        self.auto_assign_threshold = auto_assign_threshold
        self.high_confidence_threshold = high_confidence_threshold
        self.max_aliases = max_aliases

    @classmethod
    def from_config(cls, config: MatcherConfig) -> "ProjectMatcher":
        return cls(
            auto_assign_threshold=config.auto_assign_threshold,
            high_confidence_threshold=config.high_confidence_threshold,
            max_aliases=config.max_aliases,
        )

    # ═══════════════════════════════════════════════════════════
    # MATCHING
    # ═══════════════════════════════════════════════════════════

    def find_match(self, text: str, projects: list[Project]) -> ProjectMatch | None:
        """
        Find the best matching project for text.

        Args:
            text: Free text (inferred project name plus note content)
            projects: Candidate projects; archived ones are ignored

        Returns:
            ProjectMatch at or above the auto-assign threshold, else None.
            Matches below the high-confidence threshold are flagged
            needs_confirmation.
        """
        candidates = [project for project in projects if not project.is_archived]
        normalized = normalize(text or "")
        if not candidates or not normalized:
            return None

        match = self._match_by_alias(normalized, candidates) or self._match_by_fuzzy(
            normalized, candidates
        )

        if match is None or match.confidence < self.auto_assign_threshold:
            return None
        match.needs_confirmation = not self.is_high_confidence(match)

        logger.debug(
            f"Matched project {match.project.name} ({match.match_type.value}, {match.confidence:.2f})",
            extra={"project_id": match.project.id, "confidence": match.confidence},
        )
        return match

    def is_high_confidence(self, match: ProjectMatch) -> bool:
        return match.confidence >= self.high_confidence_threshold

    def _phrases(self, project: Project) -> list[str]:
        phrases = [normalize(project.name)] + [normalize(alias) for alias in project.aliases]
        return [phrase for phrase in phrases if len(phrase) >= 2]

    def _match_by_alias(self, text: str, projects: list[Project]) -> ProjectMatch | None:
        padded = f" {text} "
        scored = []

        for project in projects:
            lengths = [len(p) for p in self._phrases(project) if f" {p} " in padded]
            if lengths:
                # Longer alias means a more specific match
                scored.append((project, float(max(lengths))))

        if not scored:
            return None

        best, _ = _rank(scored)[0]
        return ProjectMatch(project=best, confidence=ALIAS_CONFIDENCE, match_type=MatchType.ALIAS)

    def _match_by_fuzzy(self, text: str, projects: list[Project]) -> ProjectMatch | None:
        text_words = set(text.split())
        scored = []

        for project in projects:
            project_words: set[str] = set()
            for phrase in self._phrases(project):
                project_words.update(phrase.split())

            overlap = text_words & project_words
            if not overlap:
                continue

            recall = len(overlap) / len(project_words)
            significant = sum(1 for word in overlap if len(word) >= 4)
            score = recall * 0.6 + significant * 0.15

            if score > FUZZY_MIN_SCORE:
                scored.append((project, score))

        if not scored:
            return None

        best, score = _rank(scored)[0]
        confidence = min(0.4 + score * 0.5, FUZZY_CONFIDENCE_CAP)
        return ProjectMatch(project=best, confidence=confidence, match_type=MatchType.FUZZY)

    # ═══════════════════════════════════════════════════════════
    # LEARNING
    # ═══════════════════════════════════════════════════════════

    def alias_candidates(
        self, text: str, project: Project, inferred_name: str | None = None
    ) -> list[str]:
        """
        Alias candidates derived from a corrected note.

        The previously inferred project name comes first. Then single words
        near "for", "about" or "regarding", and two-word phrases that look
        like the project's name.
        """
        candidates: list[str] = []

        if inferred_name:
            inferred = normalize(inferred_name)
            if len(inferred) >= 2 and inferred not in COMMON_WORDS:
                candidates.append(inferred)

        words = normalize(text or "").split()
        project_name = normalize(project.name)

        for i, word in enumerate(words):
            if len(word) >= 3 and word not in COMMON_WORDS and word not in CONTEXT_WORDS:
                context = words[max(0, i - 2) : i + 3]
                if CONTEXT_WORDS.intersection(context):
                    candidates.append(word)

            if i < len(words) - 1:
                pair = f"{word} {words[i + 1]}"
                if len(pair) >= 5 and SequenceMatcher(None, pair, project_name).ratio() > 0.6:
                    candidates.append(pair)

        # Dedupe, keep first occurrence order
        return list(dict.fromkeys(candidates))

    def learn_from_correction(
        self, text: str, project: Project, inferred_name: str | None = None
    ) -> list[str]:
        """
        Append aliases to project after the user moved a note to it.

        Additive and idempotent: aliases already present (case-insensitively)
        are skipped. When the list is full the oldest alias that is neither
        the project's name nor a current candidate is evicted; if nothing can
        be evicted the candidate is dropped.

        Args:
            text: Note text (and any inferred project text)
            project: Project the user assigned the note to; mutated in place
            inferred_name: Project name previously inferred for the note

        Returns:
            Aliases that were added
        """
        candidates = self.alias_candidates(text, project, inferred_name)
        protected = {normalize(project.name)} | set(candidates)
        added = []

        for candidate in candidates:
            if project.has_alias(candidate):
                continue

            if len(project.aliases) >= self.max_aliases:
                evictable = [a for a in project.aliases if normalize(a) not in protected]
                if not evictable:
                    break
                project.aliases.remove(evictable[0])

            project.aliases.append(candidate)
            added.append(candidate)

        if added:
            logger.info(
                f"Learned {len(added)} aliases for project {project.name}",
                extra={"project_id": project.id, "aliases": added},
            )
        return added
