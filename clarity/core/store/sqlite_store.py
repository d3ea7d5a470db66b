"""
SQLite note store implementation using aiosqlite.

All multi-statement writes run under one lock and commit or roll back as a
unit; readers share the same connection.
"""

import asyncio
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

import aiosqlite

from clarity.core.store.base import ExtractionWrite, ExtractionWriteResult, NoteStore
from clarity.models.digest import (
    DailyDigest,
    DigestHighlight,
    DigestWarning,
    DigestWarningType,
    SuggestedAction,
    SuggestedPriority,
)
from clarity.models.extracted import (
    ActionPriority,
    DecisionStatus,
    ExtractedAction,
    ExtractedCommitment,
    ExtractedDecision,
    UnresolvedItem,
)
from clarity.models.note import NextStep, NextStepType, Note, Tag
from clarity.models.person import MentionedPerson, normalize_name
from clarity.models.project import Project
from clarity.models.quota import QuotaCategory, QuotaState
from clarity.models.session import MomentumDirection
from clarity.models.url import ExtractedURL
from clarity.utils.calendar import start_of_day
from clarity.utils.exceptions import NotFoundError, StoreError, ValidationError
from clarity.utils.id_generator import generate_person_id, generate_tag_id
from clarity.utils.logger import get_logger

logger = get_logger(__name__)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE COLLATE NOCASE,
        is_archived INTEGER DEFAULT 0,
        last_activity_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_aliases (
        project_id TEXT NOT NULL,
        alias TEXT NOT NULL COLLATE NOCASE,
        position INTEGER NOT NULL,
        PRIMARY KEY (project_id, alias),
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notes (
        id TEXT PRIMARY KEY,
        content TEXT NOT NULL DEFAULT '',
        transcript TEXT,
        title TEXT NOT NULL DEFAULT '',
        intent TEXT,
        intent_confidence REAL,
        next_step_text TEXT,
        next_step_type TEXT,
        next_step_resolved INTEGER DEFAULT 0,
        next_step_resolution TEXT,
        next_step_resolved_at TEXT,
        inferred_project_name TEXT,
        project_id TEXT,
        extracted_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tags (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE COLLATE NOCASE,
        color_hex TEXT NOT NULL DEFAULT '007AFF'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS note_tags (
        note_id TEXT NOT NULL,
        tag_id TEXT NOT NULL,
        PRIMARY KEY (note_id, tag_id),
        FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE,
        FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS decisions (
        id TEXT PRIMARY KEY,
        source_note_id TEXT NOT NULL,
        content TEXT NOT NULL,
        affects TEXT DEFAULT '',
        confidence TEXT DEFAULT 'medium',
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (source_note_id) REFERENCES notes(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS actions (
        id TEXT PRIMARY KEY,
        source_note_id TEXT NOT NULL,
        content TEXT NOT NULL,
        owner TEXT DEFAULT 'me',
        deadline TEXT DEFAULT 'TBD',
        priority TEXT NOT NULL,
        is_completed INTEGER DEFAULT 0,
        is_blocked INTEGER DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (source_note_id) REFERENCES notes(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS commitments (
        id TEXT PRIMARY KEY,
        source_note_id TEXT NOT NULL,
        content TEXT NOT NULL,
        who TEXT DEFAULT 'me',
        is_completed INTEGER DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (source_note_id) REFERENCES notes(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS unresolved_items (
        id TEXT PRIMARY KEY,
        source_note_id TEXT NOT NULL,
        content TEXT NOT NULL,
        reason TEXT DEFAULT 'ambiguous',
        is_resolved INTEGER DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (source_note_id) REFERENCES notes(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS people (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        normalized_name TEXT NOT NULL UNIQUE,
        first_mentioned_at TEXT NOT NULL,
        last_mentioned_at TEXT NOT NULL,
        is_archived INTEGER DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS person_mentions (
        person_id TEXT NOT NULL,
        note_id TEXT NOT NULL,
        mentioned_at TEXT NOT NULL,
        PRIMARY KEY (person_id, note_id),
        FOREIGN KEY (person_id) REFERENCES people(id) ON DELETE CASCADE,
        FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS extracted_urls (
        id TEXT PRIMARY KEY,
        url TEXT NOT NULL,
        source_note_id TEXT NOT NULL,
        title TEXT,
        description TEXT,
        site_name TEXT,
        image_url TEXT,
        favicon_url TEXT,
        fetched_at TEXT,
        fetch_error TEXT,
        created_at TEXT NOT NULL,
        UNIQUE (source_note_id, url),
        FOREIGN KEY (source_note_id) REFERENCES notes(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_digests (
        id TEXT PRIMARY KEY,
        digest_date TEXT NOT NULL UNIQUE,
        generated_at TEXT NOT NULL,
        narrative TEXT NOT NULL DEFAULT '',
        open_item_count INTEGER DEFAULT 0,
        stalled_item_count INTEGER DEFAULT 0,
        momentum TEXT DEFAULT 'flat',
        active_project_count INTEGER DEFAULT 0,
        notes_yesterday INTEGER DEFAULT 0,
        notes_this_week INTEGER DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS digest_highlights (
        digest_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        content TEXT NOT NULL,
        PRIMARY KEY (digest_id, position),
        FOREIGN KEY (digest_id) REFERENCES daily_digests(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS digest_warnings (
        digest_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        type TEXT NOT NULL,
        content TEXT NOT NULL,
        days_since_issue INTEGER DEFAULT 0,
        PRIMARY KEY (digest_id, position),
        FOREIGN KEY (digest_id) REFERENCES daily_digests(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS digest_actions (
        digest_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        content TEXT NOT NULL,
        reason TEXT DEFAULT '',
        project_name TEXT,
        priority TEXT NOT NULL,
        PRIMARY KEY (digest_id, position),
        FOREIGN KEY (digest_id) REFERENCES daily_digests(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quota_state (
        category TEXT PRIMARY KEY,
        remaining INTEGER NOT NULL,
        free_grant_used INTEGER DEFAULT 0,
        period_start TEXT
    )
    """,
]

INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_notes_created ON notes(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_notes_project ON notes(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_decisions_note ON decisions(source_note_id)",
    "CREATE INDEX IF NOT EXISTS idx_actions_note ON actions(source_note_id)",
    "CREATE INDEX IF NOT EXISTS idx_commitments_note ON commitments(source_note_id)",
    "CREATE INDEX IF NOT EXISTS idx_unresolved_note ON unresolved_items(source_note_id)",
    "CREATE INDEX IF NOT EXISTS idx_mentions_note ON person_mentions(note_id)",
    "CREATE INDEX IF NOT EXISTS idx_urls_note ON extracted_urls(source_note_id)",
]

_PERSON_SELECT = """
    SELECT p.*,
        (SELECT COUNT(*) FROM person_mentions m WHERE m.person_id = p.id) AS mention_count,
        (SELECT COUNT(*) FROM commitments c
            WHERE c.is_completed = 0 AND lower(trim(c.who)) = p.normalized_name
        ) AS open_commitment_count
    FROM people p
"""

_PROJECT_SELECT = """
    SELECT p.*,
        (SELECT COUNT(*) FROM notes n WHERE n.project_id = p.id) AS note_count
    FROM projects p
"""


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteNoteStore(NoteStore):
    """
    SQLite-based note store.

    Features:
    - Fast local storage
    - Foreign keys with cascading deletes of derived rows
    - Single-transaction extraction writes
    - Idempotent tag links and person mentions
    """

    def __init__(self, db_path: str = "data/clarity.db"):
        """
        Initialize SQLite note store.

        Args:
            db_path: Path to SQLite database file (":memory:" for tests)
        """
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async def connect(self) -> None:
        """Establish connection to SQLite."""
        if self.connection is None:
            self.connection = await aiosqlite.connect(self.db_path)
            self.connection.row_factory = aiosqlite.Row
            await self.connection.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                await self.connection.execute("PRAGMA journal_mode = WAL")
            await self.connection.commit()

    async def initialize(self) -> None:
        """Initialize database schema."""
        await self.connect()

        for statement in SCHEMA + INDICES:
            await self.connection.execute(statement)

        await self.connection.commit()
        logger.info(f"SQLite note store ready at {self.db_path}")

    async def close(self) -> None:
        """Close the connection."""
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialize a group of writes and commit them together."""
        await self.connect()
        async with self._lock:
            try:
                yield self.connection
            except sqlite3.Error as e:
                await self.connection.rollback()
                raise StoreError(f"SQLite write failed: {e}") from e
            except BaseException:
                await self.connection.rollback()
                raise
            else:
                await self.connection.commit()

    async def _fetchall(self, query: str, params: tuple | list = ()) -> list[aiosqlite.Row]:
        await self.connect()
        cursor = await self.connection.execute(query, params)
        return list(await cursor.fetchall())

    async def _fetchone(self, query: str, params: tuple | list = ()) -> aiosqlite.Row | None:
        await self.connect()
        cursor = await self.connection.execute(query, params)
        return await cursor.fetchone()

    # ═══════════════════════════════════════════════════════════
    # NOTES
    # ═══════════════════════════════════════════════════════════

    async def add_note(self, note: Note) -> None:
        """Insert a new note."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO notes (
                    id, content, transcript, title, intent, intent_confidence,
                    next_step_text, next_step_type, next_step_resolved,
                    next_step_resolution, next_step_resolved_at,
                    inferred_project_name, project_id, extracted_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._note_params(note),
            )
            if note.project_id:
                await self._touch_project(conn, note.project_id, note.updated_at)

    async def get_note(self, note_id: str) -> Note | None:
        """Retrieve a note by ID."""
        row = await self._fetchone("SELECT * FROM notes WHERE id = ?", (note_id,))
        return self._row_to_note(row) if row else None

    async def update_note(self, note: Note) -> None:
        """Persist every note column."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE notes SET
                    content = ?, transcript = ?, title = ?, intent = ?, intent_confidence = ?,
                    next_step_text = ?, next_step_type = ?, next_step_resolved = ?,
                    next_step_resolution = ?, next_step_resolved_at = ?,
                    inferred_project_name = ?, project_id = ?, extracted_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (*self._note_params(note)[1:14], _ts(note.updated_at), note.id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Note not found: {note.id}", {"note_id": note.id})

    async def delete_note(self, note_id: str) -> bool:
        """Delete a note; cascades remove derived rows."""
        async with self._transaction() as conn:
            cursor = await conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
            deleted = cursor.rowcount > 0
            if deleted:
                # People only mentioned in this note disappear with it
                await conn.execute(
                    """
                    DELETE FROM people WHERE NOT EXISTS (
                        SELECT 1 FROM person_mentions m WHERE m.person_id = people.id
                    )
                    """
                )
        return deleted

    async def list_notes(
        self, since: datetime | None = None, limit: int | None = None
    ) -> list[Note]:
        """Notes newest first."""
        query = "SELECT * FROM notes"
        params: list = []
        if since is not None:
            query += " WHERE created_at >= ?"
            params.append(_ts(since))
        query += " ORDER BY created_at DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        rows = await self._fetchall(query, params)
        return [self._row_to_note(row) for row in rows]

    async def count_notes(self, since: datetime | None = None) -> int:
        """Count notes created at or after since."""
        if since is None:
            row = await self._fetchone("SELECT COUNT(*) FROM notes")
        else:
            row = await self._fetchone(
                "SELECT COUNT(*) FROM notes WHERE created_at >= ?", (_ts(since),)
            )
        return row[0] if row else 0

    async def get_note_tags(self, note_id: str) -> list[Tag]:
        rows = await self._fetchall(
            """
            SELECT t.* FROM tags t JOIN note_tags nt ON nt.tag_id = t.id
            WHERE nt.note_id = ? ORDER BY t.name
            """,
            (note_id,),
        )
        return [Tag(id=row["id"], name=row["name"], color_hex=row["color_hex"]) for row in rows]

    async def list_tags(self) -> list[Tag]:
        rows = await self._fetchall("SELECT * FROM tags ORDER BY name")
        return [Tag(id=row["id"], name=row["name"], color_hex=row["color_hex"]) for row in rows]

    # ═══════════════════════════════════════════════════════════
    # EXTRACTION
    # ═══════════════════════════════════════════════════════════

    async def apply_extraction(
        self, write: ExtractionWrite, at: datetime
    ) -> ExtractionWriteResult:
        """
        Write one extraction result atomically.

        A next step resolved or a project assigned after the caller read the
        note is kept; the extraction only fills what is still open.
        """
        note = write.note

        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                SELECT project_id, next_step_text, next_step_type, next_step_resolved,
                    next_step_resolution, next_step_resolved_at
                FROM notes WHERE id = ?
                """,
                (note.id,),
            )
            existing = await cursor.fetchone()
            if existing is None:
                raise NotFoundError(
                    f"Note deleted before extraction could be applied: {note.id}",
                    {"note_id": note.id},
                )
            previous_project = existing["project_id"]
            project_id = previous_project or write.matched_project_id

            next_step = note.next_step
            if existing["next_step_resolved"]:
                next_step_values = (
                    existing["next_step_text"],
                    existing["next_step_type"],
                    1,
                    existing["next_step_resolution"],
                    existing["next_step_resolved_at"],
                )
            else:
                next_step_values = (
                    next_step.text if next_step else None,
                    next_step.category.value if next_step else None,
                    int(next_step.resolved) if next_step else 0,
                    next_step.resolution if next_step else None,
                    _ts(next_step.resolved_at) if next_step else None,
                )

            await conn.execute(
                """
                UPDATE notes SET
                    title = ?, intent = ?, intent_confidence = ?,
                    next_step_text = ?, next_step_type = ?, next_step_resolved = ?,
                    next_step_resolution = ?, next_step_resolved_at = ?,
                    inferred_project_name = ?, project_id = ?, extracted_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    note.title,
                    note.intent,
                    note.intent_confidence,
                    *next_step_values,
                    note.inferred_project_name,
                    project_id,
                    _ts(note.extracted_at),
                    _ts(at),
                    note.id,
                ),
            )

            if project_id and project_id != previous_project:
                await self._touch_project(conn, project_id, at)

            if write.replace_items:
                await self._replace_items(conn, write)

            tags = [await self._link_tag(conn, note.id, name) for name in write.tags]
            if write.replace_items:
                await conn.execute("DELETE FROM person_mentions WHERE note_id = ?", (note.id,))
            person_ids = [await self._mention_person(conn, note.id, name, at) for name in write.people]
            if write.replace_items:
                await conn.execute(
                    """
                    DELETE FROM people WHERE NOT EXISTS (
                        SELECT 1 FROM person_mentions m WHERE m.person_id = people.id
                    )
                    """
                )

        stored = await self.get_note(note.id)
        people = []
        for person_id in dict.fromkeys(person_ids):
            row = await self._fetchone(_PERSON_SELECT + " WHERE p.id = ?", (person_id,))
            if row:
                people.append(self._row_to_person(row))

        return ExtractionWriteResult(
            note=stored or note, tags=list({t.id: t for t in tags}.values()), people=people
        )

    async def _replace_items(self, conn: aiosqlite.Connection, write: ExtractionWrite) -> None:
        """Replace items derived from the note, carrying user flags over by content."""
        note_id = write.note.id

        completed_actions = await self._flag_map(conn, "actions", "is_completed", note_id)
        completed_commitments = await self._flag_map(conn, "commitments", "is_completed", note_id)
        resolved_unresolved = await self._flag_map(conn, "unresolved_items", "is_resolved", note_id)
        cursor = await conn.execute(
            "SELECT content, status FROM decisions WHERE source_note_id = ?", (note_id,)
        )
        decision_status = {row["content"].lower(): row["status"] for row in await cursor.fetchall()}

        for table in ("decisions", "actions", "commitments", "unresolved_items"):
            await conn.execute(f"DELETE FROM {table} WHERE source_note_id = ?", (note_id,))

        for decision in write.decisions:
            status = decision_status.get(decision.content.lower(), decision.status.value)
            await conn.execute(
                """
                INSERT INTO decisions (id, source_note_id, content, affects, confidence, status,
                    created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    decision.id,
                    note_id,
                    decision.content,
                    decision.affects,
                    decision.confidence,
                    status,
                    _ts(decision.created_at),
                    _ts(decision.updated_at),
                ),
            )

        for action in write.actions:
            await conn.execute(
                """
                INSERT INTO actions (id, source_note_id, content, owner, deadline, priority,
                    is_completed, is_blocked, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    action.id,
                    note_id,
                    action.content,
                    action.owner,
                    action.deadline,
                    action.priority.value,
                    int(completed_actions.get(action.content.lower(), action.is_completed)),
                    int(action.is_blocked),
                    _ts(action.created_at),
                    _ts(action.updated_at),
                ),
            )

        for commitment in write.commitments:
            await conn.execute(
                """
                INSERT INTO commitments (id, source_note_id, content, who, is_completed,
                    created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    commitment.id,
                    note_id,
                    commitment.content,
                    commitment.who,
                    int(
                        completed_commitments.get(
                            commitment.content.lower(), commitment.is_completed
                        )
                    ),
                    _ts(commitment.created_at),
                    _ts(commitment.updated_at),
                ),
            )

        for item in write.unresolved:
            await conn.execute(
                """
                INSERT INTO unresolved_items (id, source_note_id, content, reason, is_resolved,
                    created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    note_id,
                    item.content,
                    item.reason,
                    int(resolved_unresolved.get(item.content.lower(), item.is_resolved)),
                    _ts(item.created_at),
                    _ts(item.updated_at),
                ),
            )

    async def _flag_map(
        self, conn: aiosqlite.Connection, table: str, column: str, note_id: str
    ) -> dict[str, bool]:
        cursor = await conn.execute(
            f"SELECT content, {column} FROM {table} WHERE source_note_id = ?", (note_id,)
        )
        return {row["content"].lower(): bool(row[column]) for row in await cursor.fetchall()}

    async def _link_tag(self, conn: aiosqlite.Connection, note_id: str, name: str) -> Tag:
        """Find-or-create a tag by name and link it to the note."""
        await conn.execute(
            "INSERT OR IGNORE INTO tags (id, name) VALUES (?, ?)", (generate_tag_id(), name)
        )
        cursor = await conn.execute("SELECT * FROM tags WHERE name = ?", (name,))
        row = await cursor.fetchone()
        await conn.execute(
            "INSERT OR IGNORE INTO note_tags (note_id, tag_id) VALUES (?, ?)", (note_id, row["id"])
        )
        return Tag(id=row["id"], name=row["name"], color_hex=row["color_hex"])

    async def _mention_person(
        self, conn: aiosqlite.Connection, note_id: str, name: str, at: datetime
    ) -> str:
        """Find-or-create a person and record one mention per note."""
        normalized = normalize_name(name)
        await conn.execute(
            """
            INSERT OR IGNORE INTO people (id, name, normalized_name, first_mentioned_at,
                last_mentioned_at) VALUES (?, ?, ?, ?, ?)
            """,
            (generate_person_id(), name.strip(), normalized, _ts(at), _ts(at)),
        )
        cursor = await conn.execute(
            "SELECT id FROM people WHERE normalized_name = ?", (normalized,)
        )
        person_id = (await cursor.fetchone())["id"]
        await conn.execute(
            "INSERT OR IGNORE INTO person_mentions (person_id, note_id, mentioned_at) VALUES (?, ?, ?)",
            (person_id, note_id, _ts(at)),
        )
        await conn.execute(
            "UPDATE people SET last_mentioned_at = ? WHERE id = ? AND last_mentioned_at < ?",
            (_ts(at), person_id, _ts(at)),
        )
        return person_id

    # ═══════════════════════════════════════════════════════════
    # EXTRACTED ITEMS
    # ═══════════════════════════════════════════════════════════

    async def _list_items(
        self, table: str, note_id: str | None, open_column: str | None, open_only: bool
    ) -> list[aiosqlite.Row]:
        query = f"SELECT * FROM {table} WHERE 1=1"
        params: list = []
        if note_id is not None:
            query += " AND source_note_id = ?"
            params.append(note_id)
        if open_only and open_column:
            query += f" AND {open_column} = 0"
        query += " ORDER BY created_at DESC"
        return await self._fetchall(query, params)

    async def list_decisions(self, note_id: str | None = None) -> list[ExtractedDecision]:
        rows = await self._list_items("decisions", note_id, None, False)
        return [self._row_to_decision(row) for row in rows]

    async def list_actions(
        self, note_id: str | None = None, open_only: bool = False
    ) -> list[ExtractedAction]:
        rows = await self._list_items("actions", note_id, "is_completed", open_only)
        return [self._row_to_action(row) for row in rows]

    async def list_commitments(
        self, note_id: str | None = None, open_only: bool = False
    ) -> list[ExtractedCommitment]:
        rows = await self._list_items("commitments", note_id, "is_completed", open_only)
        return [self._row_to_commitment(row) for row in rows]

    async def list_unresolved(
        self, note_id: str | None = None, open_only: bool = False
    ) -> list[UnresolvedItem]:
        rows = await self._list_items("unresolved_items", note_id, "is_resolved", open_only)
        return [self._row_to_unresolved(row) for row in rows]

    async def _set_column(
        self, table: str, item_id: str, column: str, value, at: datetime
    ) -> aiosqlite.Row:
        async with self._transaction() as conn:
            cursor = await conn.execute(
                f"UPDATE {table} SET {column} = ?, updated_at = ? WHERE id = ?",
                (value, _ts(at), item_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Item not found in {table}: {item_id}", {"id": item_id})
        return await self._fetchone(f"SELECT * FROM {table} WHERE id = ?", (item_id,))

    async def set_action_completed(
        self, action_id: str, completed: bool, at: datetime
    ) -> ExtractedAction:
        row = await self._set_column("actions", action_id, "is_completed", int(completed), at)
        return self._row_to_action(row)

    async def set_commitment_completed(
        self, commitment_id: str, completed: bool, at: datetime
    ) -> ExtractedCommitment:
        row = await self._set_column(
            "commitments", commitment_id, "is_completed", int(completed), at
        )
        return self._row_to_commitment(row)

    async def set_unresolved_resolved(
        self, item_id: str, resolved: bool, at: datetime
    ) -> UnresolvedItem:
        row = await self._set_column("unresolved_items", item_id, "is_resolved", int(resolved), at)
        return self._row_to_unresolved(row)

    async def set_decision_status(
        self, decision_id: str, status: DecisionStatus, at: datetime
    ) -> ExtractedDecision:
        row = await self._set_column("decisions", decision_id, "status", status.value, at)
        return self._row_to_decision(row)

    # ═══════════════════════════════════════════════════════════
    # PEOPLE
    # ═══════════════════════════════════════════════════════════

    async def list_people(self, include_archived: bool = False) -> list[MentionedPerson]:
        query = _PERSON_SELECT
        if not include_archived:
            query += " WHERE p.is_archived = 0"
        query += " ORDER BY mention_count DESC, p.last_mentioned_at DESC"
        rows = await self._fetchall(query)
        return [self._row_to_person(row) for row in rows]

    async def get_person(self, normalized_name: str) -> MentionedPerson | None:
        row = await self._fetchone(
            _PERSON_SELECT + " WHERE p.normalized_name = ?", (normalize_name(normalized_name),)
        )
        return self._row_to_person(row) if row else None

    # ═══════════════════════════════════════════════════════════
    # PROJECTS
    # ═══════════════════════════════════════════════════════════

    async def add_project(self, project: Project) -> None:
        try:
            async with self._transaction() as conn:
                await conn.execute(
                    """
                    INSERT INTO projects (id, name, is_archived, last_activity_at, created_at,
                        updated_at) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        project.id,
                        project.name,
                        int(project.is_archived),
                        _ts(project.last_activity_at),
                        _ts(project.created_at),
                        _ts(project.updated_at),
                    ),
                )
                await self._write_aliases(conn, project)
        except StoreError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise ValidationError(
                    f"Project already exists: {project.name}", {"name": project.name}
                ) from e
            raise

    async def get_project(self, project_id: str) -> Project | None:
        row = await self._fetchone(_PROJECT_SELECT + " WHERE p.id = ?", (project_id,))
        if row is None:
            return None
        return await self._row_to_project(row)

    async def update_project(self, project: Project) -> None:
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE projects SET name = ?, is_archived = ?, last_activity_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    project.name,
                    int(project.is_archived),
                    _ts(project.last_activity_at),
                    _ts(project.updated_at),
                    project.id,
                ),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Project not found: {project.id}", {"project_id": project.id})
            await conn.execute("DELETE FROM project_aliases WHERE project_id = ?", (project.id,))
            await self._write_aliases(conn, project)

    async def delete_project(self, project_id: str) -> bool:
        async with self._transaction() as conn:
            cursor = await conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        return cursor.rowcount > 0

    async def list_projects(self, include_archived: bool = True) -> list[Project]:
        query = _PROJECT_SELECT
        if not include_archived:
            query += " WHERE p.is_archived = 0"
        query += " ORDER BY p.name COLLATE NOCASE"
        rows = await self._fetchall(query)
        return [await self._row_to_project(row) for row in rows]

    async def assign_note_project(
        self, note_id: str, project_id: str | None, at: datetime
    ) -> Note:
        async with self._transaction() as conn:
            if project_id is not None:
                cursor = await conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,))
                if await cursor.fetchone() is None:
                    raise NotFoundError(
                        f"Project not found: {project_id}", {"project_id": project_id}
                    )
            cursor = await conn.execute(
                "UPDATE notes SET project_id = ?, updated_at = ? WHERE id = ?",
                (project_id, _ts(at), note_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Note not found: {note_id}", {"note_id": note_id})
            if project_id is not None:
                await self._touch_project(conn, project_id, at)

        return await self.get_note(note_id)

    async def _write_aliases(self, conn: aiosqlite.Connection, project: Project) -> None:
        for position, alias in enumerate(project.aliases):
            await conn.execute(
                "INSERT OR IGNORE INTO project_aliases (project_id, alias, position) VALUES (?, ?, ?)",
                (project.id, alias, position),
            )

    async def _touch_project(self, conn: aiosqlite.Connection, project_id: str, at: datetime) -> None:
        await conn.execute(
            """
            UPDATE projects SET last_activity_at = ?
            WHERE id = ? AND (last_activity_at IS NULL OR last_activity_at < ?)
            """,
            (_ts(at), project_id, _ts(at)),
        )

    # ═══════════════════════════════════════════════════════════
    # URLS
    # ═══════════════════════════════════════════════════════════

    async def add_urls(self, urls: list[ExtractedURL]) -> list[ExtractedURL]:
        inserted = []
        async with self._transaction() as conn:
            for url in urls:
                cursor = await conn.execute(
                    """
                    INSERT OR IGNORE INTO extracted_urls (id, url, source_note_id, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (url.id, url.url, url.source_note_id, _ts(url.created_at)),
                )
                if cursor.rowcount > 0:
                    inserted.append(url)
        return inserted

    async def update_url(self, url: ExtractedURL) -> None:
        async with self._transaction() as conn:
            await conn.execute(
                """
                UPDATE extracted_urls SET title = ?, description = ?, site_name = ?,
                    image_url = ?, favicon_url = ?, fetched_at = ?, fetch_error = ?
                WHERE id = ?
                """,
                (
                    url.title,
                    url.description,
                    url.site_name,
                    url.image_url,
                    url.favicon_url,
                    _ts(url.fetched_at),
                    url.fetch_error,
                    url.id,
                ),
            )

    async def list_urls(self, note_id: str | None = None) -> list[ExtractedURL]:
        if note_id is None:
            rows = await self._fetchall("SELECT * FROM extracted_urls ORDER BY created_at DESC")
        else:
            rows = await self._fetchall(
                "SELECT * FROM extracted_urls WHERE source_note_id = ? ORDER BY created_at",
                (note_id,),
            )
        return [
            ExtractedURL(
                id=row["id"],
                url=row["url"],
                source_note_id=row["source_note_id"],
                title=row["title"],
                description=row["description"],
                site_name=row["site_name"],
                image_url=row["image_url"],
                favicon_url=row["favicon_url"],
                fetched_at=_dt(row["fetched_at"]),
                fetch_error=row["fetch_error"],
                created_at=_dt(row["created_at"]),
            )
            for row in rows
        ]

    # ═══════════════════════════════════════════════════════════
    # DAILY DIGESTS
    # ═══════════════════════════════════════════════════════════

    async def get_digest(self, digest_date: datetime) -> DailyDigest | None:
        row = await self._fetchone(
            "SELECT * FROM daily_digests WHERE digest_date = ?",
            (_ts(start_of_day(digest_date)),),
        )
        if row is None:
            return None
        return await self._row_to_digest(row)

    async def upsert_digest(self, digest: DailyDigest) -> DailyDigest:
        key = _ts(start_of_day(digest.digest_date))

        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO daily_digests (id, digest_date, generated_at, narrative,
                    open_item_count, stalled_item_count, momentum, active_project_count,
                    notes_yesterday, notes_this_week)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(digest_date) DO UPDATE SET
                    generated_at = excluded.generated_at,
                    narrative = excluded.narrative,
                    open_item_count = excluded.open_item_count,
                    stalled_item_count = excluded.stalled_item_count,
                    momentum = excluded.momentum,
                    active_project_count = excluded.active_project_count,
                    notes_yesterday = excluded.notes_yesterday,
                    notes_this_week = excluded.notes_this_week
                """,
                (
                    digest.id,
                    key,
                    _ts(digest.generated_at),
                    digest.narrative,
                    digest.open_item_count,
                    digest.stalled_item_count,
                    digest.momentum.value,
                    digest.active_project_count,
                    digest.notes_yesterday,
                    digest.notes_this_week,
                ),
            )
            cursor = await conn.execute(
                "SELECT id FROM daily_digests WHERE digest_date = ?", (key,)
            )
            digest_id = (await cursor.fetchone())["id"]

            for table in ("digest_highlights", "digest_warnings", "digest_actions"):
                await conn.execute(f"DELETE FROM {table} WHERE digest_id = ?", (digest_id,))

            for position, highlight in enumerate(digest.highlights):
                await conn.execute(
                    "INSERT INTO digest_highlights (digest_id, position, content) VALUES (?, ?, ?)",
                    (digest_id, position, highlight.content),
                )
            for position, warning in enumerate(digest.warnings):
                await conn.execute(
                    """
                    INSERT INTO digest_warnings (digest_id, position, type, content,
                        days_since_issue) VALUES (?, ?, ?, ?, ?)
                    """,
                    (digest_id, position, warning.type.value, warning.content, warning.days_since_issue),
                )
            for position, action in enumerate(digest.suggested_actions):
                await conn.execute(
                    """
                    INSERT INTO digest_actions (digest_id, position, content, reason,
                        project_name, priority) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        digest_id,
                        position,
                        action.content,
                        action.reason,
                        action.project_name,
                        action.priority.value,
                    ),
                )

        return await self.get_digest(digest.digest_date)

    async def list_digests(self, limit: int = 30) -> list[DailyDigest]:
        rows = await self._fetchall(
            "SELECT * FROM daily_digests ORDER BY digest_date DESC LIMIT ?", (limit,)
        )
        return [await self._row_to_digest(row) for row in rows]

    # ═══════════════════════════════════════════════════════════
    # QUOTA
    # ═══════════════════════════════════════════════════════════

    async def load_quota_states(self) -> list[QuotaState]:
        rows = await self._fetchall("SELECT * FROM quota_state")
        states = []
        for row in rows:
            try:
                category = QuotaCategory(row["category"])
            except ValueError:
                logger.warning(f"Ignoring unknown quota category: {row['category']}")
                continue
            states.append(
                QuotaState(
                    category=category,
                    remaining=max(0, row["remaining"]),
                    free_grant_used=bool(row["free_grant_used"]),
                    period_start=_dt(row["period_start"]),
                )
            )
        return states

    async def save_quota_states(self, states: list[QuotaState]) -> None:
        async with self._transaction() as conn:
            for state in states:
                await conn.execute(
                    """
                    INSERT INTO quota_state (category, remaining, free_grant_used, period_start)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(category) DO UPDATE SET
                        remaining = excluded.remaining,
                        free_grant_used = excluded.free_grant_used,
                        period_start = excluded.period_start
                    """,
                    (
                        state.category.value,
                        state.remaining,
                        int(state.free_grant_used),
                        _ts(state.period_start),
                    ),
                )

    # ═══════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════

    def _note_params(self, note: Note) -> tuple:
        next_step = note.next_step
        return (
            note.id,
            note.content,
            note.transcript,
            note.title,
            note.intent,
            note.intent_confidence,
            next_step.text if next_step else None,
            next_step.category.value if next_step else None,
            int(next_step.resolved) if next_step else 0,
            next_step.resolution if next_step else None,
            _ts(next_step.resolved_at) if next_step else None,
            note.inferred_project_name,
            note.project_id,
            _ts(note.extracted_at),
            _ts(note.created_at),
            _ts(note.updated_at),
        )

    def _row_to_note(self, row: aiosqlite.Row) -> Note:
        next_step = None
        if row["next_step_text"]:
            next_step = NextStep(
                text=row["next_step_text"],
                category=NextStepType.parse(row["next_step_type"]),
                resolved=bool(row["next_step_resolved"]),
                resolution=row["next_step_resolution"],
                resolved_at=_dt(row["next_step_resolved_at"]),
            )

        return Note(
            id=row["id"],
            content=row["content"],
            transcript=row["transcript"],
            title=row["title"],
            intent=row["intent"],
            intent_confidence=row["intent_confidence"],
            next_step=next_step,
            inferred_project_name=row["inferred_project_name"],
            project_id=row["project_id"],
            extracted_at=_dt(row["extracted_at"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def _row_to_decision(self, row: aiosqlite.Row) -> ExtractedDecision:
        return ExtractedDecision(
            id=row["id"],
            source_note_id=row["source_note_id"],
            content=row["content"],
            affects=row["affects"] or "",
            confidence=row["confidence"] or "medium",
            status=DecisionStatus(row["status"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def _row_to_action(self, row: aiosqlite.Row) -> ExtractedAction:
        return ExtractedAction(
            id=row["id"],
            source_note_id=row["source_note_id"],
            content=row["content"],
            owner=row["owner"] or "me",
            deadline=row["deadline"] or "TBD",
            priority=ActionPriority(row["priority"]),
            is_completed=bool(row["is_completed"]),
            is_blocked=bool(row["is_blocked"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def _row_to_commitment(self, row: aiosqlite.Row) -> ExtractedCommitment:
        return ExtractedCommitment(
            id=row["id"],
            source_note_id=row["source_note_id"],
            content=row["content"],
            who=row["who"] or "me",
            is_completed=bool(row["is_completed"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def _row_to_unresolved(self, row: aiosqlite.Row) -> UnresolvedItem:
        return UnresolvedItem(
            id=row["id"],
            source_note_id=row["source_note_id"],
            content=row["content"],
            reason=row["reason"] or "ambiguous",
            is_resolved=bool(row["is_resolved"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def _row_to_person(self, row: aiosqlite.Row) -> MentionedPerson:
        return MentionedPerson(
            id=row["id"],
            name=row["name"],
            normalized_name=row["normalized_name"],
            mention_count=row["mention_count"],
            first_mentioned_at=_dt(row["first_mentioned_at"]),
            last_mentioned_at=_dt(row["last_mentioned_at"]),
            open_commitment_count=row["open_commitment_count"],
            is_archived=bool(row["is_archived"]),
        )

    async def _row_to_project(self, row: aiosqlite.Row) -> Project:
        alias_rows = await self._fetchall(
            "SELECT alias FROM project_aliases WHERE project_id = ? ORDER BY position",
            (row["id"],),
        )
        return Project(
            id=row["id"],
            name=row["name"],
            aliases=[alias_row["alias"] for alias_row in alias_rows],
            is_archived=bool(row["is_archived"]),
            note_count=row["note_count"],
            last_activity_at=_dt(row["last_activity_at"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    async def _row_to_digest(self, row: aiosqlite.Row) -> DailyDigest:
        digest_id = row["id"]
        highlights = await self._fetchall(
            "SELECT content FROM digest_highlights WHERE digest_id = ? ORDER BY position",
            (digest_id,),
        )
        warnings = await self._fetchall(
            "SELECT * FROM digest_warnings WHERE digest_id = ? ORDER BY position", (digest_id,)
        )
        actions = await self._fetchall(
            "SELECT * FROM digest_actions WHERE digest_id = ? ORDER BY position", (digest_id,)
        )

        return DailyDigest(
            id=digest_id,
            digest_date=_dt(row["digest_date"]),
            generated_at=_dt(row["generated_at"]),
            narrative=row["narrative"],
            highlights=[DigestHighlight(content=h["content"]) for h in highlights],
            warnings=[
                DigestWarning(
                    type=DigestWarningType.parse(w["type"]),
                    content=w["content"],
                    days_since_issue=w["days_since_issue"],
                )
                for w in warnings
            ],
            suggested_actions=[
                SuggestedAction(
                    content=a["content"],
                    reason=a["reason"] or "",
                    project_name=a["project_name"],
                    priority=SuggestedPriority.parse(a["priority"]),
                )
                for a in actions
            ],
            open_item_count=row["open_item_count"],
            stalled_item_count=row["stalled_item_count"],
            momentum=MomentumDirection(row["momentum"]),
            active_project_count=row["active_project_count"],
            notes_yesterday=row["notes_yesterday"],
            notes_this_week=row["notes_this_week"],
        )
