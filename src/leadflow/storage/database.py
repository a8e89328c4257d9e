"""SQLite lead store for the outreach engine."""

import json
import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Generator

from .leads import LeadStore
from .models import Lead, Activity


class LeadDatabase(LeadStore):
    """SQLite database for storing leads and their activity log."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize database connection."""
        if db_path is None:
            db_path = Path.home() / ".leadflow" / "leads.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS leads (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source TEXT NOT NULL,

                    name TEXT,
                    email TEXT,
                    phone TEXT,
                    phone_digits TEXT,

                    score INTEGER DEFAULT 0,
                    status TEXT DEFAULT 'new',
                    tags TEXT,
                    notes TEXT,
                    fields_json TEXT,

                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS activities (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    action_type TEXT NOT NULL,
                    target_type TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    description TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_leads_phone ON leads(phone_digits)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_activities_target ON activities(target_type, target_id)
            """)

    def _row_to_lead(self, row: sqlite3.Row) -> Lead:
        """Convert a database row to a Lead object."""
        return Lead(
            id=str(row["id"]),
            source=row["source"],
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
            score=row["score"] or 0,
            status=row["status"] or "new",
            tags=[t for t in (row["tags"] or "").split(",") if t],
            notes=row["notes"],
            fields=json.loads(row["fields_json"]) if row["fields_json"] else {},
            created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else datetime.now(),
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else datetime.now(),
        )

    def _lead_params(self, lead: Lead) -> tuple:
        return (
            lead.source,
            lead.name,
            lead.email,
            lead.phone,
            re.sub(r"\D", "", lead.phone or ""),
            lead.score,
            lead.status,
            ",".join(lead.tags) if lead.tags else None,
            lead.notes,
            json.dumps(lead.fields) if lead.fields else None,
        )

    def get_lead(self, lead_id: str) -> Optional[Lead]:
        """Get a lead by ID."""
        try:
            key = int(lead_id)
        except (TypeError, ValueError):
            return None

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM leads WHERE id = ?", (key,))
            row = cursor.fetchone()
            return self._row_to_lead(row) if row else None

    def create_lead(self, lead: Lead) -> Lead:
        """Insert a new lead."""
        now = datetime.now()
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO leads (
                    source, name, email, phone, phone_digits,
                    score, status, tags, notes, fields_json,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, self._lead_params(lead) + (now.isoformat(), now.isoformat()))
            lead.id = str(cursor.lastrowid)
        lead.created_at = now
        lead.updated_at = now
        return lead

    def update_lead(self, lead_id: str, updates: Dict[str, Any]) -> Lead:
        """Apply a partial update to a lead."""
        lead = self.get_lead(lead_id)
        if lead is None:
            raise KeyError(f"Lead not found: {lead_id}")

        lead.apply(updates)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE leads SET
                    source = ?, name = ?, email = ?, phone = ?, phone_digits = ?,
                    score = ?, status = ?, tags = ?, notes = ?, fields_json = ?,
                    updated_at = ?
                WHERE id = ?
            """, self._lead_params(lead) + (lead.updated_at.isoformat(), int(lead.id)))

        return lead

    def find_by_phone(self, phone: str) -> Optional[Lead]:
        """Find a lead by phone number, tolerating a missing country code."""
        digits = re.sub(r"\D", "", phone or "")
        if not digits:
            return None

        candidates = [digits]
        if len(digits) == 11 and digits.startswith("1"):
            candidates.append(digits[1:])
        elif len(digits) == 10:
            candidates.append(f"1{digits}")

        with self._get_connection() as conn:
            cursor = conn.cursor()
            placeholders = ", ".join("?" for _ in candidates)
            cursor.execute(
                f"SELECT * FROM leads WHERE phone_digits IN ({placeholders}) ORDER BY id LIMIT 1",
                candidates
            )
            row = cursor.fetchone()
            return self._row_to_lead(row) if row else None

    def record_activity(
        self,
        user_id: int,
        action_type: str,
        target_type: str,
        target_id: str,
        description: str,
        timestamp: Optional[datetime] = None
    ) -> Activity:
        """Append an activity record."""
        created_at = timestamp or datetime.now()

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO activities (user_id, action_type, target_type, target_id, description, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (user_id, action_type, target_type, str(target_id), description, created_at.isoformat()))

            return Activity(
                id=cursor.lastrowid,
                user_id=user_id,
                action_type=action_type,
                target_type=target_type,
                target_id=str(target_id),
                description=description,
                created_at=created_at,
            )

    def get_activities(self, target_id: str, limit: int = 100) -> List[Activity]:
        """Get activity records for a lead, newest first."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM activities
                WHERE target_id = ?
                ORDER BY created_at DESC
                LIMIT ?
            """, (str(target_id), limit))

            return [
                Activity(
                    id=row["id"],
                    user_id=row["user_id"],
                    action_type=row["action_type"],
                    target_type=row["target_type"],
                    target_id=row["target_id"],
                    description=row["description"] or "",
                    created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else datetime.now(),
                )
                for row in cursor.fetchall()
            ]
