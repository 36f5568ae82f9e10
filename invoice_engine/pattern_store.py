from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from schemas.extraction_schema import ExtractionRule, PatternCategory, RuleDraft


class RegistryUnavailableError(RuntimeError):
    def __init__(self, message: str, code: str = "registry_unavailable") -> None:
        super().__init__(message)
        self.code = code


class DuplicatePatternError(ValueError):
    def __init__(self, message: str, code: str = "duplicate_pattern") -> None:
        super().__init__(message)
        self.code = code


_COLUMNS = (
    "id, name, category, regex, priority, confidence_weight, is_active, capture_group, "
    "flags, date_format, validation_regex, description, notes, created_by, "
    "created_at_utc, updated_at_utc"
)


class PatternStore:
    """SQLite persistence for extraction rules.

    Every sqlite failure surfaces as ``RegistryUnavailableError`` so callers
    never mistake an unreachable store for an empty one.
    """

    def __init__(self, db_path: str | Path = "data/patterns.db") -> None:
        self._db_path = str(db_path)
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise RegistryUnavailableError(f"Cannot open pattern store {self._db_path}: {exc}") from exc
        try:
            yield conn
        except sqlite3.IntegrityError as exc:
            raise DuplicatePatternError(f"Pattern name already exists: {exc}") from exc
        except sqlite3.Error as exc:
            raise RegistryUnavailableError(f"Pattern store operation failed: {exc}") from exc
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS extraction_rules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    name_key TEXT NOT NULL UNIQUE,
                    category TEXT NOT NULL,
                    regex TEXT NOT NULL,
                    priority INTEGER NOT NULL,
                    confidence_weight REAL NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    capture_group INTEGER NOT NULL DEFAULT 1,
                    flags TEXT,
                    date_format TEXT,
                    validation_regex TEXT,
                    description TEXT,
                    notes TEXT,
                    created_by TEXT NOT NULL,
                    created_at_utc TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_rules_category ON extraction_rules (category, is_active, priority)"
            )

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> ExtractionRule:
        return ExtractionRule(
            id=row["id"],
            name=row["name"],
            category=PatternCategory(row["category"]),
            regex=row["regex"],
            priority=row["priority"],
            confidence_weight=row["confidence_weight"],
            is_active=bool(row["is_active"]),
            capture_group=row["capture_group"],
            flags=row["flags"],
            date_format=row["date_format"],
            validation_regex=row["validation_regex"],
            description=row["description"],
            notes=row["notes"],
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at_utc"]),
            updated_at=datetime.fromisoformat(row["updated_at_utc"]),
        )

    def load_rules(self) -> list[ExtractionRule]:
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM extraction_rules ORDER BY category, priority, id"
            ).fetchall()
        return [self._row_to_rule(row) for row in rows]

    def get_rule(self, rule_id: int) -> ExtractionRule | None:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM extraction_rules WHERE id = ?",
                (rule_id,),
            ).fetchone()
        return self._row_to_rule(row) if row else None

    def count_rules(self) -> int:
        with self._session() as conn:
            row = conn.execute("SELECT COUNT(*) FROM extraction_rules").fetchone()
        return int(row[0])

    def name_exists(self, name: str, *, exclude_id: int | None = None) -> bool:
        with self._session() as conn:
            row = conn.execute(
                "SELECT id FROM extraction_rules WHERE name_key = ?",
                (name.strip().lower(),),
            ).fetchone()
        return row is not None and row["id"] != exclude_id

    def insert_rules(self, drafts: list[RuleDraft]) -> list[ExtractionRule]:
        now = datetime.now(timezone.utc).isoformat()
        ids: list[int] = []
        with self._session() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for draft in drafts:
                    cursor = conn.execute(
                        """
                        INSERT INTO extraction_rules
                        (name, name_key, category, regex, priority, confidence_weight, is_active,
                         capture_group, flags, date_format, validation_regex, description, notes,
                         created_by, created_at_utc, updated_at_utc)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            draft.name,
                            draft.name.lower(),
                            draft.category.value,
                            draft.regex,
                            draft.priority,
                            draft.confidence_weight,
                            int(draft.is_active),
                            draft.capture_group,
                            draft.flags,
                            draft.date_format,
                            draft.validation_regex,
                            draft.description,
                            draft.notes,
                            draft.created_by,
                            now,
                            now,
                        ),
                    )
                    ids.append(int(cursor.lastrowid))
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        return [rule for rule in (self.get_rule(rule_id) for rule_id in ids) if rule is not None]

    def insert_rule(self, draft: RuleDraft) -> ExtractionRule:
        return self.insert_rules([draft])[0]

    def update_rule(self, rule_id: int, draft: RuleDraft) -> ExtractionRule | None:
        now = datetime.now(timezone.utc).isoformat()
        with self._session() as conn:
            cursor = conn.execute(
                """
                UPDATE extraction_rules
                SET name = ?, name_key = ?, category = ?, regex = ?, priority = ?,
                    confidence_weight = ?, is_active = ?, capture_group = ?, flags = ?,
                    date_format = ?, validation_regex = ?, description = ?, notes = ?,
                    updated_at_utc = ?
                WHERE id = ?
                """,
                (
                    draft.name,
                    draft.name.lower(),
                    draft.category.value,
                    draft.regex,
                    draft.priority,
                    draft.confidence_weight,
                    int(draft.is_active),
                    draft.capture_group,
                    draft.flags,
                    draft.date_format,
                    draft.validation_regex,
                    draft.description,
                    draft.notes,
                    now,
                    rule_id,
                ),
            )
            if cursor.rowcount == 0:
                return None
        return self.get_rule(rule_id)

    def set_active(self, rule_id: int, is_active: bool) -> ExtractionRule | None:
        now = datetime.now(timezone.utc).isoformat()
        with self._session() as conn:
            cursor = conn.execute(
                "UPDATE extraction_rules SET is_active = ?, updated_at_utc = ? WHERE id = ?",
                (int(is_active), now, rule_id),
            )
            if cursor.rowcount == 0:
                return None
        return self.get_rule(rule_id)

    def delete_rule(self, rule_id: int) -> bool:
        with self._session() as conn:
            cursor = conn.execute("DELETE FROM extraction_rules WHERE id = ?", (rule_id,))
        return cursor.rowcount == 1
