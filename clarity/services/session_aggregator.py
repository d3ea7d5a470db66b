"""
Session aggregation: cheap local rollup of what's going on right now.

No inference and no I/O. The snapshot is recomputed only when marked stale,
when the freshness window has elapsed, or when the note count moved;
otherwise the cached object is returned as-is.
"""

from collections.abc import Callable
from datetime import datetime, timedelta

from clarity.config import SessionConfig
from clarity.models.extracted import (
    ExtractedAction,
    ExtractedCommitment,
    ExtractedDecision,
    UnresolvedItem,
)
from clarity.models.note import Note
from clarity.models.project import Project
from clarity.models.session import (
    AttentionWarning,
    MomentumDirection,
    ProjectSummary,
    SessionSnapshot,
    StalledItem,
    WarningType,
)
from clarity.utils.calendar import days_between, start_of_day, start_of_week
from clarity.utils.logger import get_logger

logger = get_logger(__name__)

TOP_PROJECTS = 3
TOP_COMMITMENT_WARNINGS = 3


def momentum_direction(current: int, previous: int) -> MomentumDirection:
    """UP at a 20% gain or better, DOWN at a 20% drop or worse."""
    if previous == 0:
        return MomentumDirection.UP if current > 0 else MomentumDirection.FLAT
    ratio = current / previous
    if ratio >= 1.2:
        return MomentumDirection.UP
    if ratio <= 0.8:
        return MomentumDirection.DOWN
    return MomentumDirection.FLAT


class SessionAggregator:
    """Holds the cached snapshot and its staleness flag."""

    def __init__(
        self,
        config: SessionConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or SessionConfig()
        self._clock = clock
        self._snapshot: SessionSnapshot | None = None
        self._stale = True

    def mark_stale(self) -> None:
        """Called whenever a note is saved or a derived item changes."""
        self._stale = True

    @property
    def is_stale(self) -> bool:
        if self._stale or self._snapshot is None:
            return True
        window = timedelta(minutes=self.config.freshness_minutes)
        return self._clock() - self._snapshot.generated_at >= window

    def current(self) -> SessionSnapshot | None:
        """Cached snapshot with its staleness flag brought up to date, no recompute."""
        if self._snapshot is None:
            return None
        return self._snapshot.model_copy(update={"is_stale": self.is_stale})

    def refresh_if_needed(
        self,
        notes: list[Note] | None,
        actions: list[ExtractedAction] | None,
        commitments: list[ExtractedCommitment] | None,
        unresolved: list[UnresolvedItem] | None,
        decisions: list[ExtractedDecision] | None = None,
        projects: list[Project] | None = None,
    ) -> SessionSnapshot:
        """
        Return the cached snapshot, recomputing it only when needed.

        Args:
            notes: All persisted notes
            actions: Extracted actions
            commitments: Extracted commitments
            unresolved: Unresolved items
            decisions: Extracted decisions, for decision-without-action warnings
            projects: Projects, for the top active projects list

        Returns:
            SessionSnapshot (the identical cached object when still fresh)
        """
        notes = notes or []
        if (
            not self.is_stale
            and self._snapshot is not None
            and self._snapshot.total_notes == len(notes)
        ):
            return self._snapshot

        self._snapshot = self.compute(notes, actions, commitments, unresolved, decisions, projects)
        self._stale = False
        logger.debug(
            "Session snapshot recomputed",
            extra={
                "total_notes": self._snapshot.total_notes,
                "open_actions": self._snapshot.open_actions,
                "stalled": self._snapshot.stalled_count,
            },
        )
        return self._snapshot

    # ═══════════════════════════════════════════════════════════
    # COMPUTATION
    # ═══════════════════════════════════════════════════════════

    def compute(
        self,
        notes: list[Note] | None,
        actions: list[ExtractedAction] | None,
        commitments: list[ExtractedCommitment] | None,
        unresolved: list[UnresolvedItem] | None,
        decisions: list[ExtractedDecision] | None = None,
        projects: list[Project] | None = None,
    ) -> SessionSnapshot:
        """Build a fresh snapshot. Missing inputs count as empty."""
        notes = notes or []
        actions = actions or []
        commitments = commitments or []
        unresolved = unresolved or []
        decisions = decisions or []
        projects = projects or []

        now = self._clock()
        today = start_of_day(now)
        week_start = start_of_week(now)

        open_actions = [a for a in actions if not a.is_completed]
        open_commitments = [c for c in commitments if not c.is_completed]
        open_unresolved = [u for u in unresolved if not u.is_resolved]

        stalled = self._stalled_items(open_actions, open_commitments, open_unresolved, now)
        current, previous = self._activity(notes, actions, commitments, now)

        return SessionSnapshot(
            generated_at=now,
            total_notes=len(notes),
            notes_today=sum(1 for n in notes if n.created_at >= today),
            notes_this_week=sum(1 for n in notes if n.created_at >= week_start),
            open_actions=len(open_actions),
            open_commitments=len(open_commitments),
            unresolved_count=len(open_unresolved),
            stalled_count=len(stalled),
            momentum=momentum_direction(current, previous),
            activity_this_window=current,
            activity_prior_window=previous,
            stalled_items=stalled,
            warnings=self._warnings(stalled, open_actions, open_commitments, decisions, now),
            top_projects=self._top_projects(projects, now),
            is_stale=False,
        )

    def _stalled_items(
        self,
        actions: list[ExtractedAction],
        commitments: list[ExtractedCommitment],
        unresolved: list[UnresolvedItem],
        now: datetime,
    ) -> list[StalledItem]:
        threshold = self.config.stalled_after_days
        items = []

        for kind, group in (("action", actions), ("commitment", commitments), ("unresolved", unresolved)):
            for item in group:
                age = days_between(item.last_activity, now)
                if age > threshold:
                    items.append(
                        StalledItem(
                            id=item.id,
                            kind=kind,
                            content=item.content,
                            days_since_activity=age,
                            source_note_id=item.source_note_id,
                        )
                    )

        items.sort(key=lambda s: (-s.days_since_activity, s.id))
        return items

    def _activity(
        self,
        notes: list[Note],
        actions: list[ExtractedAction],
        commitments: list[ExtractedCommitment],
        now: datetime,
    ) -> tuple[int, int]:
        """Notes created plus items completed, this window vs the one before."""
        window = timedelta(days=self.config.momentum_window_days)
        current_start = now - window
        previous_start = current_start - window

        stamps = [n.created_at for n in notes]
        stamps += [a.updated_at for a in actions if a.is_completed]
        stamps += [c.updated_at for c in commitments if c.is_completed]

        current = sum(1 for ts in stamps if current_start <= ts <= now)
        previous = sum(1 for ts in stamps if previous_start <= ts < current_start)
        return current, previous

    def _warnings(
        self,
        stalled: list[StalledItem],
        open_actions: list[ExtractedAction],
        open_commitments: list[ExtractedCommitment],
        decisions: list[ExtractedDecision],
        now: datetime,
    ) -> list[AttentionWarning]:
        warnings: list[AttentionWarning] = []

        for item in stalled:
            warnings.append(
                AttentionWarning(
                    type=WarningType.STALLED,
                    title=f"Stalled {item.kind}",
                    description=f'"{item.content}" has had no activity for {item.days_since_activity} days',
                    days_since_issue=item.days_since_activity,
                    related_item_id=item.id,
                )
            )

        old_commitments = sorted(
            (
                (days_between(c.created_at, now), c)
                for c in open_commitments
                if days_between(c.created_at, now) >= self.config.commitment_warning_days
            ),
            key=lambda pair: (-pair[0], pair[1].id),
        )
        for age, commitment in old_commitments[:TOP_COMMITMENT_WARNINGS]:
            warnings.append(
                AttentionWarning(
                    type=WarningType.COMMITMENT,
                    title="Open commitment",
                    description=f'{commitment.who} committed to "{commitment.content}" {age} days ago',
                    days_since_issue=age,
                    related_item_id=commitment.id,
                )
            )

        for action in open_actions:
            if action.is_overdue:
                warnings.append(
                    AttentionWarning(
                        type=WarningType.OVERDUE,
                        title="Overdue action",
                        description=f'"{action.content}" was due {action.deadline}',
                        days_since_issue=days_between(action.created_at, now),
                        related_item_id=action.id,
                    )
                )

        notes_with_actions = {a.source_note_id for a in open_actions}
        for decision in decisions:
            age = days_between(decision.created_at, now)
            if (
                decision.is_active
                and age >= self.config.decision_followup_days
                and decision.source_note_id not in notes_with_actions
            ):
                warnings.append(
                    AttentionWarning(
                        type=WarningType.DECISION_WITHOUT_ACTION,
                        title="Decision without follow-up",
                        description=f'Decided "{decision.content}" {age} days ago with no action',
                        days_since_issue=age,
                        related_item_id=decision.id,
                    )
                )

        return warnings[: self.config.max_warnings]

    def _top_projects(self, projects: list[Project], now: datetime) -> list[ProjectSummary]:
        active = [p for p in projects if not p.is_archived and p.last_activity_at is not None]
        active.sort(key=lambda p: (p.last_activity_at, p.note_count), reverse=True)

        return [
            ProjectSummary(
                id=p.id,
                name=p.name,
                note_count=p.note_count,
                last_activity_at=p.last_activity_at,
                days_since_activity=days_between(p.last_activity_at, now),
            )
            for p in active[:TOP_PROJECTS]
        ]
