import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from .addresses import extract_domain
from .errors import SentMailLookupError
from .models import Analysis, ReportPart

logger = logging.getLogger(__name__)

# Always store DB in /data (persisted via docker-compose bind mount)
DB_PATH = os.getenv("DB_PATH", "/data/bounces.db")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

STATUS_UNUSED = "unused"


def _timestamp(when: Optional[datetime] = None) -> str:
    """UTC timestamp in the same format sqlite's CURRENT_TIMESTAMP uses."""
    when = when or datetime.now(timezone.utc)
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    return when.strftime(TIMESTAMP_FORMAT)


def get_connection(db_path=None):
    conn = sqlite3.connect(db_path or DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path=None):
    """Ensure the sent_mails and analyses tables exist"""
    conn = get_connection(db_path)
    cur = conn.cursor()

    cur.execute("""
        CREATE TABLE IF NOT EXISTS sent_mails (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            header_id TEXT NOT NULL,
            mail TEXT NOT NULL,
            created TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    cur.execute("CREATE INDEX IF NOT EXISTS sent_mails_header_id ON sent_mails (header_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS sent_mails_mail ON sent_mails (mail)")

    cur.execute("""
        CREATE TABLE IF NOT EXISTS analyses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            analyst TEXT,
            header_id TEXT,
            code TEXT,
            mail TEXT,
            status TEXT,
            report TEXT,
            created TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # Ensure new columns exist (idempotent upgrade)
    cur.execute("PRAGMA table_info(analyses)")
    existing_cols = [row[1] for row in cur.fetchall()]
    if "domain" not in existing_cols:
        cur.execute("ALTER TABLE analyses ADD COLUMN domain TEXT")

    conn.commit()
    conn.close()


# ============================================
# Sent mail
# ============================================

def record_sent_mail(header_id, mail, created=None, db_path=None):
    init_db(db_path)
    conn = get_connection(db_path)
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO sent_mails (header_id, mail, created) VALUES (?, ?, ?)",
        (header_id, mail.lower(), _timestamp(created)),
    )
    conn.commit()
    conn.close()


class SqliteSentMailIndex:
    """SentMailIndex backed by the sent_mails table."""

    def __init__(self, db_path=None):
        self.db_path = db_path
        init_db(db_path)

    def _query(self, sql: str, params: tuple) -> List[sqlite3.Row]:
        try:
            conn = get_connection(self.db_path)
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise SentMailLookupError(str(e)) from e

    def lookup(self, identifier: str) -> List[str]:
        rows = self._query(
            "SELECT DISTINCT mail FROM sent_mails WHERE header_id=? ORDER BY mail",
            (identifier,),
        )
        return [row["mail"] for row in rows]

    def recently_sent_to(self, address: str, since: datetime) -> int:
        rows = self._query(
            "SELECT COUNT(*) FROM sent_mails WHERE mail=? AND created >= ?",
            (address.lower(), _timestamp(since)),
        )
        return rows[0][0]


# ============================================
# Analyses (result sink)
# ============================================

def _serialize_report(report_parts: Any) -> str:
    parts = []
    for raw in report_parts or []:
        part = ReportPart.coerce(raw)
        if part is not None:
            parts.append(part.to_dict())
    return json.dumps(parts, default=str)


def insert_analysis(analysis: Analysis, analyst: str, report_parts: Any, db_path=None) -> Optional[int]:
    """Store a complete analysis as unused; incomplete ones are skipped"""
    if not analysis.is_complete:
        logger.debug(f"Not storing incomplete analysis: {analysis.to_dict()}")
        return None

    init_db(db_path)
    conn = get_connection(db_path)
    cur = conn.cursor()
    cur.execute(
        """INSERT INTO analyses
           (analyst, header_id, code, mail, domain, status, report, created)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (analyst, analysis.header_id, analysis.code, analysis.mail,
         extract_domain(analysis.mail), STATUS_UNUSED,
         _serialize_report(report_parts), _timestamp()),
    )
    row_id = cur.lastrowid
    conn.commit()
    conn.close()
    return row_id


def _where(filters):
    query = " WHERE 1=1"
    params = []
    for column in ("status", "code", "mail", "domain", "analyst"):
        if filters.get(column):
            query += f" AND {column}=?"
            params.append(filters[column])
    return query, params


def query_analyses(filters=None, db_path=None):
    init_db(db_path)  # Safety: ensure table exists before querying
    filters = filters or {}

    if filters.get("group_by") == "domain":
        query = "SELECT domain, COUNT(*) as count FROM analyses GROUP BY domain ORDER BY count DESC"
        params = []
    elif filters.get("group_by") == "code":
        query = "SELECT code, COUNT(*) as count FROM analyses GROUP BY code ORDER BY count DESC"
        params = []
    else:
        where, params = _where(filters)
        query = ("SELECT id, analyst, header_id, code, mail, domain, status, created FROM analyses"
                 + where + " ORDER BY id DESC")

    conn = get_connection(db_path)
    cur = conn.cursor()
    cur.execute(query, params)
    rows = [dict(row) for row in cur.fetchall()]
    conn.close()
    return rows


def count_analyses(filters=None, db_path=None):
    init_db(db_path)  # Safety: ensure table exists before counting
    where, params = _where(filters or {})

    conn = get_connection(db_path)
    cur = conn.cursor()
    cur.execute("SELECT COUNT(*) FROM analyses" + where, params)
    total = cur.fetchone()[0]
    conn.close()
    return total


def set_status(ids: Iterable[int], status: str, db_path=None) -> int:
    ids = list(ids)
    if not ids:
        return 0
    init_db(db_path)
    conn = get_connection(db_path)
    cur = conn.cursor()
    cur.execute(
        f"UPDATE analyses SET status=? WHERE id IN ({','.join('?' * len(ids))})",
        [status, *ids],
    )
    changed = cur.rowcount
    conn.commit()
    conn.close()
    return changed
