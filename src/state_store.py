import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set

from crew_models import Trip


CLAIM_COLUMNS = (
    "id",
    "crew_id",
    "claim_type",
    "trip_id",
    "claim_date",
    "amount",
    "status",
    "ai_validated",
    "ai_confidence",
    "ai_recommendation",
    "ai_reasoning",
    "contract_references",
    "notes",
    "auto_generated",
    "detection_method",
    "priority",
    "supporting_data",
)


def _get_db_path() -> str:
    """Read the DB path on every call so tests can monkeypatch it."""
    return os.getenv("CREW_PAY_DB", "crew_pay.db")


@contextmanager
def _conn():
    con = sqlite3.connect(_get_db_path())
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA journal_mode=WAL;")
    try:
        yield con
        con.commit()
    finally:
        con.close()


def init_db():
    with _conn() as con:
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS trips (
              id TEXT PRIMARY KEY,
              trip_date TEXT NOT NULL,
              route TEXT,
              departure_time TEXT,
              arrival_time TEXT,
              actual_departure_time TEXT,
              actual_arrival_time TEXT,
              flight_time_hours REAL,
              credit_hours REAL,
              is_international INTEGER DEFAULT 0,
              status TEXT,
              captain_id TEXT,
              first_officer_id TEXT,
              senior_fa_id TEXT,
              junior_fa_id TEXT
            );
            """
        )
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS pay_claims (
              id TEXT PRIMARY KEY,
              crew_id TEXT,
              claim_type TEXT,
              trip_id TEXT,
              claim_date TEXT,
              amount REAL,
              status TEXT,
              ai_validated INTEGER DEFAULT 0,
              ai_confidence REAL,
              ai_recommendation TEXT,
              ai_reasoning TEXT,
              contract_references TEXT,
              notes TEXT,
              auto_generated INTEGER DEFAULT 0,
              detection_method TEXT,
              priority TEXT,
              supporting_data TEXT,
              created_at TEXT,
              updated_at TEXT
            );
            """
        )
        con.execute("CREATE INDEX IF NOT EXISTS idx_pay_claims_trip ON pay_claims(trip_id, auto_generated);")
        # processed: done for good; retry: rediscover even if some claims were written
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS processed_trips (
              trip_id TEXT PRIMARY KEY,
              claims_detected INTEGER,
              status TEXT DEFAULT 'processed',
              processed_at TEXT
            );
            """
        )
        columns = {r["name"] for r in con.execute("PRAGMA table_info(processed_trips)").fetchall()}
        if "status" not in columns:
            con.execute("ALTER TABLE processed_trips ADD COLUMN status TEXT DEFAULT 'processed';")
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_log (
              ts TEXT,
              level TEXT,
              actor TEXT,
              action TEXT,
              target_ids TEXT,
              score INTEGER,
              result TEXT,
              error TEXT
            );
            """
        )


def upsert_trip(trip: Trip):
    row = trip.to_row()
    cols = list(row.keys())
    with _conn() as con:
        con.execute(
            f"INSERT OR REPLACE INTO trips({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
            [row[c] for c in cols],
        )


def get_trip(trip_id: str) -> Optional[Trip]:
    with _conn() as con:
        row = con.execute("SELECT * FROM trips WHERE id=?", (trip_id,)).fetchone()
        return Trip.from_row(dict(row)) if row else None


_UNPROCESSED_WHERE = """
    t.status = 'completed'
    AND t.trip_date >= ?
    AND (
      EXISTS (
        SELECT 1 FROM processed_trips pt
        WHERE pt.trip_id = t.id AND pt.status = 'retry'
      )
      OR (
        NOT EXISTS (
          SELECT 1 FROM pay_claims pc
          WHERE pc.trip_id = t.id AND pc.auto_generated = 1
        )
        AND NOT EXISTS (
          SELECT 1 FROM processed_trips pt WHERE pt.trip_id = t.id
        )
      )
    )
"""


def _cutoff(lookback_days: int, today: Optional[date]) -> str:
    return ((today or date.today()) - timedelta(days=lookback_days)).isoformat()


def get_unprocessed_trips(lookback_days: int = 7, today: Optional[date] = None) -> List[Trip]:
    """Completed trips in the lookback window that were never processed or are marked for retry."""
    with _conn() as con:
        rows = con.execute(
            f"SELECT t.* FROM trips t WHERE {_UNPROCESSED_WHERE} ORDER BY t.trip_date DESC, t.id",
            (_cutoff(lookback_days, today),),
        ).fetchall()
        return [Trip.from_row(dict(r)) for r in rows]


def count_unprocessed_trips(lookback_days: int = 7, today: Optional[date] = None) -> int:
    with _conn() as con:
        cur = con.execute(
            f"SELECT COUNT(*) FROM trips t WHERE {_UNPROCESSED_WHERE}",
            (_cutoff(lookback_days, today),),
        )
        return cur.fetchone()[0]


def mark_trip_processed(trip_id: str, claims_detected: int, status: str = "processed"):
    """status 'retry' keeps the trip discoverable even when some of its claims exist."""
    if status not in ("processed", "retry"):
        raise ValueError(f"unknown processed_trips status: {status}")
    with _conn() as con:
        con.execute(
            "INSERT OR REPLACE INTO processed_trips(trip_id, claims_detected, status, processed_at) VALUES (?,?,?,?)",
            (trip_id, claims_detected, status, datetime.utcnow().isoformat()),
        )


def get_claimed_types(trip_id: str) -> Set[str]:
    """Claim types that already have an auto-generated row for the trip."""
    with _conn() as con:
        rows = con.execute(
            "SELECT DISTINCT claim_type FROM pay_claims WHERE trip_id = ? AND auto_generated = 1",
            (trip_id,),
        ).fetchall()
        return {r["claim_type"] for r in rows}


def _claim_from_row(row: sqlite3.Row) -> Dict:
    claim = dict(row)
    claim["contract_references"] = json.loads(claim.get("contract_references") or "[]")
    claim["supporting_data"] = json.loads(claim.get("supporting_data") or "{}")
    claim["ai_validated"] = bool(claim.get("ai_validated"))
    claim["auto_generated"] = bool(claim.get("auto_generated"))
    return claim


def insert_claim(fields: Dict) -> Dict:
    """Insert one pay claim and return the stored row."""
    missing = [c for c in ("id", "crew_id", "claim_type", "amount", "status") if fields.get(c) is None]
    if missing:
        raise ValueError(f"claim is missing required fields: {', '.join(missing)}")

    values = dict(fields)
    values["contract_references"] = json.dumps(values.get("contract_references") or [], ensure_ascii=False)
    values["supporting_data"] = json.dumps(values.get("supporting_data") or {}, ensure_ascii=False, default=str)
    values["ai_validated"] = 1 if values.get("ai_validated") else 0
    values["auto_generated"] = 1 if values.get("auto_generated") else 0
    claim_date = values.get("claim_date") or date.today()
    values["claim_date"] = claim_date.isoformat() if hasattr(claim_date, "isoformat") else str(claim_date)
    now = datetime.utcnow().isoformat()

    cols = list(CLAIM_COLUMNS) + ["created_at", "updated_at"]
    params = [values.get(c) for c in CLAIM_COLUMNS] + [now, now]
    with _conn() as con:
        con.execute(
            f"INSERT INTO pay_claims({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
            params,
        )
        row = con.execute("SELECT * FROM pay_claims WHERE id=?", (values["id"],)).fetchone()
        return _claim_from_row(row)


def get_claim(claim_id: str) -> Optional[Dict]:
    with _conn() as con:
        row = con.execute("SELECT * FROM pay_claims WHERE id=?", (claim_id,)).fetchone()
        return _claim_from_row(row) if row else None


def list_recent_claims(limit: int = 20, crew_id: Optional[str] = None) -> List[Dict]:
    query = "SELECT * FROM pay_claims WHERE auto_generated = 1"
    params: list = []
    if crew_id:
        query += " AND crew_id = ?"
        params.append(crew_id)
    query += " ORDER BY created_at DESC, id DESC LIMIT ?"
    params.append(limit)
    with _conn() as con:
        return [_claim_from_row(r) for r in con.execute(query, params).fetchall()]


def list_claims_for_crew(crew_id: str, exclude_id: Optional[str] = None) -> List[Dict]:
    with _conn() as con:
        rows = con.execute(
            "SELECT * FROM pay_claims WHERE crew_id = ? AND id != ? ORDER BY claim_date DESC",
            (crew_id, exclude_id or ""),
        ).fetchall()
        return [_claim_from_row(r) for r in rows]


def get_claim_stats() -> Dict:
    with _conn() as con:
        row = con.execute(
            """
            SELECT
              COUNT(*) AS total_auto_generated,
              COALESCE(SUM(CASE WHEN status = 'approved' THEN 1 ELSE 0 END), 0) AS auto_approved,
              COALESCE(SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END), 0) AS manual_review,
              COALESCE(SUM(CASE WHEN status = 'rejected' THEN 1 ELSE 0 END), 0) AS rejected,
              AVG(ai_confidence * 100) AS avg_confidence,
              COALESCE(SUM(CASE WHEN status = 'approved' THEN amount ELSE 0 END), 0) AS total_amount
            FROM pay_claims
            WHERE auto_generated = 1
            """
        ).fetchone()

    total = row["total_auto_generated"]
    return {
        "total_auto_generated": total,
        "auto_approved": row["auto_approved"],
        "manual_review": row["manual_review"],
        "rejected": row["rejected"],
        "auto_approval_rate": round(row["auto_approved"] / total * 100, 1) if total else 0.0,
        "avg_confidence": round(row["avg_confidence"] or 0, 1),
        "total_amount": round(row["total_amount"] or 0, 2),
    }


def write_audit(level: str, actor: str, action: str, target_ids: list, score: int, result: str, error: str | None = None):
    with _conn() as con:
        con.execute(
            "INSERT INTO audit_log(ts, level, actor, action, target_ids, score, result, error) VALUES (?,?,?,?,?,?,?,?)",
            (datetime.utcnow().isoformat(), level, actor, action, json.dumps(target_ids), score, result, error),
        )


def get_audit_log(action: Optional[str] = None) -> List[Dict]:
    query = "SELECT * FROM audit_log"
    params: list = []
    if action:
        query += " WHERE action = ?"
        params.append(action)
    with _conn() as con:
        rows = con.execute(query + " ORDER BY ts", params).fetchall()
        return [dict(r) | {"target_ids": json.loads(r["target_ids"] or "[]")} for r in rows]
