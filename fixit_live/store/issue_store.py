"""
Issue Store: the authoritative issue records the coordinator mutates.

Behavioral Contract:
- find_by_id() returns a copy; mutating it never touches the stored record
- update_status() is a compare-and-swap on the status field: it applies
  only if the stored status still equals expected_status, and reports
  whether it did
- save() overwrites the full record

Prototype: in-memory and SQLite. Production would back this with the
platform's document database using a conditional update.
"""

import sqlite3
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from fixit_live.models.issue import Issue, IssueStatus


class IssueStore(Protocol):
    def find_by_id(self, issue_id: str) -> Optional[Issue]: ...

    def update_status(
        self,
        issue_id: str,
        expected_status: IssueStatus,
        new_status: IssueStatus,
        fields: Optional[dict] = None,
    ) -> Optional[Issue]: ...

    def save(self, issue: Issue) -> Issue: ...


def _apply(issue: Issue, new_status: IssueStatus, fields: Optional[dict]) -> Issue:
    """Build the post-transition record; validation enforces invariants."""
    data = issue.model_dump()
    data.update(fields or {})
    data["status"] = new_status
    data["updated_at"] = datetime.now(timezone.utc)
    return Issue.model_validate(data)


class InMemoryIssueStore:
    """Dictionary-backed issue store guarded by a single lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._issues: Dict[str, Issue] = {}

    def find_by_id(self, issue_id: str) -> Optional[Issue]:
        with self._lock:
            issue = self._issues.get(issue_id)
            return issue.model_copy(deep=True) if issue else None

    def update_status(
        self,
        issue_id: str,
        expected_status: IssueStatus,
        new_status: IssueStatus,
        fields: Optional[dict] = None,
    ) -> Optional[Issue]:
        """Returns the updated issue, or None if the swap did not apply."""
        with self._lock:
            current = self._issues.get(issue_id)
            if current is None or current.status != expected_status:
                return None
            updated = _apply(current, new_status, fields)
            self._issues[issue_id] = updated
            return updated.model_copy(deep=True)

    def save(self, issue: Issue) -> Issue:
        with self._lock:
            stored = issue.model_copy(deep=True)
            if stored.created_at is None:
                stored.created_at = datetime.now(timezone.utc)
            stored.updated_at = datetime.now(timezone.utc)
            self._issues[issue.id] = stored
            return stored.model_copy(deep=True)

    def all(self) -> List[Issue]:
        with self._lock:
            return [i.model_copy(deep=True) for i in self._issues.values()]


class SqliteIssueStore:
    """
    SQLite-backed issue store.
    The status column is the compare-and-swap target; the full record is
    kept as JSON alongside it.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the issues table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS issues (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                posted_by TEXT NOT NULL,
                assigned_to TEXT,
                record_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_issues_status ON issues(status)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_issues_assigned_to ON issues(assigned_to, status)
        """)
        self._conn.commit()

    def _deserialize(self, row: sqlite3.Row) -> Issue:
        return Issue.model_validate_json(row["record_json"])

    def find_by_id(self, issue_id: str) -> Optional[Issue]:
        with self._lock:
            row = self._conn.execute(
                "SELECT record_json FROM issues WHERE id = ?", (issue_id,)
            ).fetchone()
        return self._deserialize(row) if row else None

    def update_status(
        self,
        issue_id: str,
        expected_status: IssueStatus,
        new_status: IssueStatus,
        fields: Optional[dict] = None,
    ) -> Optional[Issue]:
        """Conditional UPDATE ... WHERE status = expected; rowcount decides."""
        with self._lock:
            row = self._conn.execute(
                "SELECT record_json FROM issues WHERE id = ? AND status = ?",
                (issue_id, expected_status.value),
            ).fetchone()
            if row is None:
                return None
            updated = _apply(self._deserialize(row), new_status, fields)
            cursor = self._conn.execute(
                """
                UPDATE issues
                SET status = ?, assigned_to = ?, record_json = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    updated.status.value,
                    updated.assigned_to,
                    updated.model_dump_json(),
                    updated.updated_at.isoformat(),
                    issue_id,
                    expected_status.value,
                ),
            )
            self._conn.commit()
            if cursor.rowcount != 1:
                return None
            return updated

    def save(self, issue: Issue) -> Issue:
        stored = issue.model_copy(deep=True)
        if stored.created_at is None:
            stored.created_at = datetime.now(timezone.utc)
        stored.updated_at = datetime.now(timezone.utc)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO issues (id, status, posted_by, assigned_to, record_json, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    posted_by = excluded.posted_by,
                    assigned_to = excluded.assigned_to,
                    record_json = excluded.record_json,
                    updated_at = excluded.updated_at
                """,
                (
                    stored.id,
                    stored.status.value,
                    stored.posted_by,
                    stored.assigned_to,
                    stored.model_dump_json(),
                    stored.updated_at.isoformat(),
                ),
            )
            self._conn.commit()
        return stored

    def count_by_status(self, status: IssueStatus) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS cnt FROM issues WHERE status = ?",
                (status.value,),
            ).fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
