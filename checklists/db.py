from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from . import config
from .answers import Answer, answer_from_row, answer_to_row
from .schema import Scope, TemplateSchema, load_scope, load_template_schema

STATUS_DRAFT = "DRAFT"
STATUS_FINALIZED = "FINALIZED"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  email TEXT,
  phone TEXT,
  role TEXT NOT NULL,
  is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS units (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS unit_groups (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_unit_scopes (
  user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  unit_id TEXT NOT NULL REFERENCES units(id) ON DELETE CASCADE,
  PRIMARY KEY (user_id, unit_id)
);

CREATE TABLE IF NOT EXISTS templates (
  id TEXT PRIMARY KEY,
  title TEXT NOT NULL,
  description TEXT,
  active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS template_groups (
  id TEXT PRIMARY KEY,
  template_id TEXT NOT NULL REFERENCES templates(id) ON DELETE CASCADE,
  title TEXT NOT NULL,
  description TEXT,
  position INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS questions (
  id TEXT PRIMARY KEY,
  group_id TEXT NOT NULL REFERENCES template_groups(id) ON DELETE CASCADE,
  title TEXT NOT NULL,
  description TEXT,
  type TEXT NOT NULL,
  position INTEGER NOT NULL DEFAULT 0,
  required INTEGER NOT NULL DEFAULT 0,
  options_json TEXT,
  allow_multiple_photos INTEGER NOT NULL DEFAULT 0,
  weight REAL
);

CREATE TABLE IF NOT EXISTS scopes (
  id TEXT PRIMARY KEY,
  template_id TEXT NOT NULL REFERENCES templates(id),
  unit_id TEXT NOT NULL REFERENCES units(id),
  group_id TEXT REFERENCES unit_groups(id),
  active INTEGER NOT NULL DEFAULT 1,
  last_submitted_at TEXT,
  last_supervisor_id TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS submissions (
  id TEXT PRIMARY KEY,
  template_id TEXT NOT NULL REFERENCES templates(id),
  scope_id TEXT NOT NULL REFERENCES scopes(id),
  unit_id TEXT NOT NULL REFERENCES units(id),
  group_id TEXT,
  supervisor_id TEXT NOT NULL REFERENCES users(id),
  status TEXT NOT NULL CHECK (status IN ('DRAFT', 'FINALIZED')),
  observations TEXT,
  lat REAL,
  lng REAL,
  accuracy REAL,
  address TEXT,
  ip TEXT,
  user_agent TEXT,
  device_id TEXT,
  started_at TEXT NOT NULL,
  submitted_at TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  protocol TEXT UNIQUE,
  hash TEXT,
  supervisor_signature_url TEXT,
  manager_signature_url TEXT,
  manager_signed_at TEXT,
  manager_signed_by TEXT REFERENCES users(id)
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_submissions_open_draft
  ON submissions(scope_id, supervisor_id) WHERE status = 'DRAFT';

CREATE INDEX IF NOT EXISTS ix_submissions_template_submitted
  ON submissions(template_id, status, submitted_at);

CREATE TABLE IF NOT EXISTS answers (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  submission_id TEXT NOT NULL REFERENCES submissions(id) ON DELETE CASCADE,
  question_id TEXT NOT NULL REFERENCES questions(id),
  text_value TEXT,
  bool_value INTEGER,
  number_value REAL,
  option_value TEXT,
  photo_url TEXT,
  observation TEXT,
  score INTEGER CHECK (score IS NULL OR score BETWEEN 1 AND 5),
  created_at TEXT NOT NULL,
  UNIQUE (submission_id, question_id)
);

CREATE TABLE IF NOT EXISTS branding_settings (
  id TEXT PRIMARY KEY,
  primary_color TEXT,
  secondary_color TEXT,
  accent_color TEXT,
  company_name TEXT,
  logo_url TEXT
);

CREATE TABLE IF NOT EXISTS notification_queue (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  channel TEXT NOT NULL,
  recipient TEXT NOT NULL,
  payload_json TEXT NOT NULL,
  status TEXT NOT NULL,
  created_at TEXT NOT NULL,
  error TEXT
);
"""


def _connect() -> sqlite3.Connection:
    path = config.DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(str(path), timeout=config.SQLITE_TIMEOUT_SEC, isolation_level=None)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys=ON;")
    busy_ms = int(config.SQLITE_TIMEOUT_SEC * 1000)
    con.execute(f"PRAGMA busy_timeout={busy_ms};")
    return con


@contextmanager
def db_conn() -> Iterator[sqlite3.Connection]:
    con = _connect()
    try:
        yield con
    finally:
        con.close()


@contextmanager
def transaction(con: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """BEGIN IMMEDIATE .. COMMIT, ROLLBACK on any exception."""
    con.execute("BEGIN IMMEDIATE")
    try:
        yield con
    except BaseException:
        con.execute("ROLLBACK")
        raise
    con.execute("COMMIT")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id() -> str:
    return uuid.uuid4().hex


def init_db() -> None:
    with db_conn() as con:
        con.executescript(SCHEMA_SQL)


# -------------------------
# users / scope
# -------------------------
def load_user(con: sqlite3.Connection, user_id: str) -> Optional[sqlite3.Row]:
    return con.execute(
        "SELECT id, name, email, phone, role, is_active FROM users WHERE id = ?",
        (user_id,),
    ).fetchone()


def load_user_unit_ids(con: sqlite3.Connection, user_id: str) -> List[str]:
    rows = con.execute(
        "SELECT unit_id FROM user_unit_scopes WHERE user_id = ? ORDER BY unit_id",
        (user_id,),
    ).fetchall()
    return [r["unit_id"] for r in rows]


def users_with_role(con: sqlite3.Connection, role: str) -> List[sqlite3.Row]:
    return con.execute(
        """
        SELECT id, name, email, phone FROM users
        WHERE upper(role) = upper(?) AND is_active = 1
        ORDER BY name
        """,
        (role,),
    ).fetchall()


def load_unit_name(con: sqlite3.Connection, unit_id: str) -> Optional[str]:
    row = con.execute("SELECT name FROM units WHERE id = ?", (unit_id,)).fetchone()
    return row["name"] if row else None


def touch_scope(con: sqlite3.Connection, scope_id: str, supervisor_id: str, at: str) -> None:
    con.execute(
        """
        UPDATE scopes
        SET last_submitted_at = ?, last_supervisor_id = ?, updated_at = ?
        WHERE id = ?
        """,
        (at, supervisor_id, at, scope_id),
    )


# -------------------------
# submissions
# -------------------------
_SUBMISSION_META_COLS = (
    "observations",
    "lat",
    "lng",
    "accuracy",
    "address",
    "ip",
    "user_agent",
    "device_id",
)


def find_open_draft(con: sqlite3.Connection, scope_id: str, supervisor_id: str) -> Optional[sqlite3.Row]:
    return con.execute(
        "SELECT * FROM submissions WHERE scope_id = ? AND supervisor_id = ? AND status = ?",
        (scope_id, supervisor_id, STATUS_DRAFT),
    ).fetchone()


def load_submission_row(con: sqlite3.Connection, submission_id: str) -> Optional[sqlite3.Row]:
    return con.execute("SELECT * FROM submissions WHERE id = ?", (submission_id,)).fetchone()


def upsert_draft(con: sqlite3.Connection, scope: Scope, supervisor_id: str, meta: Dict[str, Any], at: str) -> str:
    """
    Create the (scope, supervisor) draft or update it in place.
    Keyed by ux_submissions_open_draft, so a second open draft cannot exist.
    """
    values = [meta.get(col) for col in _SUBMISSION_META_COLS]
    cols = ", ".join(_SUBMISSION_META_COLS)
    marks = ", ".join("?" for _ in _SUBMISSION_META_COLS)
    updates = ", ".join(f"{col} = excluded.{col}" for col in _SUBMISSION_META_COLS)
    row = con.execute(
        f"""
        INSERT INTO submissions (
          id, template_id, scope_id, unit_id, group_id, supervisor_id, status,
          {cols}, started_at, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, {marks}, ?, ?, ?)
        ON CONFLICT(scope_id, supervisor_id) WHERE status = 'DRAFT'
        DO UPDATE SET {updates}, updated_at = excluded.updated_at
        RETURNING id
        """,
        (
            new_id(),
            scope.template_id,
            scope.id,
            scope.unit_id,
            scope.group_id,
            supervisor_id,
            STATUS_DRAFT,
            *values,
            at,
            at,
            at,
        ),
    ).fetchone()
    return row["id"]


def mark_finalized(
    con: sqlite3.Connection,
    submission_id: str,
    *,
    protocol: str,
    hash_hex: str,
    at: str,
    supervisor_signature_url: Optional[str],
    manager_signature_url: Optional[str],
    meta: Optional[Dict[str, Any]] = None,
) -> None:
    sets = [
        "status = ?",
        "protocol = ?",
        "hash = ?",
        "submitted_at = ?",
        "updated_at = ?",
        "supervisor_signature_url = ?",
    ]
    params: List[Any] = [
        STATUS_FINALIZED,
        protocol,
        hash_hex,
        at,
        at,
        supervisor_signature_url,
    ]
    # a manager signature already attached to the draft survives unless a new one arrives
    if manager_signature_url:
        sets += ["manager_signature_url = ?", "manager_signed_at = ?", "manager_signed_by = NULL"]
        params += [manager_signature_url, at]
    for col, value in (meta or {}).items():
        if col in _SUBMISSION_META_COLS:
            sets.append(f"{col} = ?")
            params.append(value)
    params.append(submission_id)
    cur = con.execute(
        f"UPDATE submissions SET {', '.join(sets)} WHERE id = ? AND status = 'DRAFT'",
        tuple(params),
    )
    if cur.rowcount != 1:
        raise sqlite3.IntegrityError(f"submission {submission_id} is not an open draft")


def set_manager_signature(con: sqlite3.Connection, submission_id: str, url: str, signer_id: str, at: str) -> None:
    con.execute(
        """
        UPDATE submissions
        SET manager_signature_url = ?, manager_signed_at = ?, manager_signed_by = ?, updated_at = ?
        WHERE id = ?
        """,
        (url, at, signer_id, at, submission_id),
    )


def load_answers(con: sqlite3.Connection, submission_id: str, schema: TemplateSchema) -> List[Answer]:
    questions = schema.question_map()
    rows = con.execute(
        "SELECT * FROM answers WHERE submission_id = ? ORDER BY id",
        (submission_id,),
    ).fetchall()
    out: List[Answer] = []
    for r in rows:
        question = questions.get(r["question_id"])
        if question is None:
            continue
        out.append(answer_from_row(question, r))
    return out


def replace_answers(con: sqlite3.Connection, submission_id: str, answers: List[Answer], at: str) -> None:
    con.execute("DELETE FROM answers WHERE submission_id = ?", (submission_id,))
    for answer in answers:
        row = answer_to_row(answer)
        con.execute(
            """
            INSERT INTO answers (
              submission_id, question_id, text_value, bool_value, number_value,
              option_value, photo_url, observation, score, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                submission_id,
                row["question_id"],
                row["text_value"],
                row["bool_value"],
                row["number_value"],
                row["option_value"],
                row["photo_url"],
                row["observation"],
                row["score"],
                at,
            ),
        )


def submission_to_wire(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "escopoId": row["scope_id"],
        "templateId": row["template_id"],
        "unidadeId": row["unit_id"],
        "grupoId": row["group_id"],
        "supervisorId": row["supervisor_id"],
        "status": row["status"],
        "observacoes": row["observations"],
        "startedAt": row["started_at"],
        "submittedAt": row["submitted_at"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
        "protocolo": row["protocol"],
        "hash": row["hash"],
        "assinaturaFotoUrl": row["supervisor_signature_url"],
        "gerenteAssinaturaFotoUrl": row["manager_signature_url"],
        "gerenteAssinadoEm": row["manager_signed_at"],
        "gerenteAssinadoPorId": row["manager_signed_by"],
        "lat": row["lat"],
        "lng": row["lng"],
        "accuracy": row["accuracy"],
        "endereco": row["address"],
        "ip": row["ip"],
        "userAgent": row["user_agent"],
        "deviceId": row["device_id"],
    }


# -------------------------
# report aggregate
# -------------------------
@dataclass
class Person:
    id: str
    name: str
    email: Optional[str] = None


@dataclass
class SubmissionReport:
    id: str
    status: str
    template: TemplateSchema
    unit_name: str
    group_name: Optional[str]
    supervisor: Person
    answers: Dict[str, Answer] = field(default_factory=dict)
    observations: Optional[str] = None
    protocol: Optional[str] = None
    submitted_at: Optional[str] = None
    created_at: Optional[str] = None
    supervisor_signature_url: Optional[str] = None
    manager_signature_url: Optional[str] = None
    manager_signed_at: Optional[str] = None
    manager: Optional[Person] = None


def _person(con: sqlite3.Connection, user_id: Optional[str]) -> Optional[Person]:
    if not user_id:
        return None
    row = load_user(con, user_id)
    if not row:
        return Person(id=user_id, name=user_id)
    return Person(id=row["id"], name=row["name"], email=row["email"])


def load_submission_report(con: sqlite3.Connection, submission_id: str) -> Optional[SubmissionReport]:
    row = load_submission_row(con, submission_id)
    if not row:
        return None
    scope = load_scope(con, row["scope_id"])
    schema = load_template_schema(con, row["template_id"])
    answers = {a.question_id: a for a in load_answers(con, submission_id, schema)}
    return SubmissionReport(
        id=row["id"],
        status=row["status"],
        template=schema,
        unit_name=scope.unit_name,
        group_name=scope.group_name,
        supervisor=_person(con, row["supervisor_id"]) or Person(id="", name=""),
        answers=answers,
        observations=row["observations"],
        protocol=row["protocol"],
        submitted_at=row["submitted_at"],
        created_at=row["created_at"],
        supervisor_signature_url=row["supervisor_signature_url"],
        manager_signature_url=row["manager_signature_url"],
        manager_signed_at=row["manager_signed_at"],
        manager=_person(con, row["manager_signed_by"]),
    )


def list_finalized_submissions(
    con: sqlite3.Connection,
    template_id: str,
    start: str,
    end: str,
    *,
    unit_ids: Optional[List[str]] = None,
    group_id: Optional[str] = None,
) -> List[sqlite3.Row]:
    """FINALIZED submissions with start <= submitted_at < end."""
    q = """
    SELECT * FROM submissions
    WHERE template_id = ? AND status = ? AND submitted_at >= ? AND submitted_at < ?
    """
    params: List[Any] = [template_id, STATUS_FINALIZED, start, end]
    if unit_ids is not None:
        if not unit_ids:
            return []
        q += " AND unit_id IN ({marks})".format(marks=",".join(["?"] * len(unit_ids)))
        params.extend(unit_ids)
    if group_id:
        q += " AND group_id = ?"
        params.append(group_id)
    q += " ORDER BY submitted_at DESC"
    return con.execute(q, tuple(params)).fetchall()


def load_branding_row(con: sqlite3.Connection) -> Optional[sqlite3.Row]:
    return con.execute("SELECT * FROM branding_settings WHERE id = 'default'").fetchone()


def queue_notification(channel: str, recipient: str, payload: dict, error: Optional[str] = None) -> None:
    with db_conn() as con:
        con.execute(
            """
            INSERT INTO notification_queue(channel, recipient, payload_json, status, created_at, error)
            VALUES(?, ?, ?, ?, ?, ?)
            """,
            (
                channel,
                recipient,
                json.dumps(payload, ensure_ascii=False),
                "ERROR" if error else "PENDING",
                now_iso(),
                error,
            ),
        )


# -------------------------
# fixtures for local runs and tests
# -------------------------
def insert_user(con: sqlite3.Connection, user_id: str, name: str, role: str, *, email: Optional[str] = None,
                phone: Optional[str] = None, unit_ids: Optional[List[str]] = None) -> None:
    con.execute(
        "INSERT OR REPLACE INTO users(id, name, email, phone, role, is_active) VALUES(?, ?, ?, ?, ?, 1)",
        (user_id, name, email, phone, role),
    )
    for unit_id in unit_ids or []:
        con.execute(
            "INSERT OR IGNORE INTO user_unit_scopes(user_id, unit_id) VALUES(?, ?)",
            (user_id, unit_id),
        )


def insert_template(con: sqlite3.Connection, template: Dict[str, Any]) -> str:
    """
    template = {"id", "title", "description"?, "active"?, "groups": [
        {"id", "title", "description"?, "questions": [
            {"id", "title", "type", "required"?, "options"?, "multiple"?, "weight"?, "description"?}]}]}
    Positions follow list order, starting at 1.
    """
    con.execute(
        "INSERT INTO templates(id, title, description, active) VALUES(?, ?, ?, ?)",
        (template["id"], template["title"], template.get("description"), int(template.get("active", True))),
    )
    for gpos, group in enumerate(template.get("groups") or [], start=1):
        con.execute(
            "INSERT INTO template_groups(id, template_id, title, description, position) VALUES(?, ?, ?, ?, ?)",
            (group["id"], template["id"], group["title"], group.get("description"), gpos),
        )
        for qpos, q in enumerate(group.get("questions") or [], start=1):
            options = q.get("options")
            con.execute(
                """
                INSERT INTO questions(
                  id, group_id, title, description, type, position, required,
                  options_json, allow_multiple_photos, weight
                ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    q["id"],
                    group["id"],
                    q["title"],
                    q.get("description"),
                    q["type"],
                    qpos,
                    int(bool(q.get("required"))),
                    json.dumps(options, ensure_ascii=False) if options else None,
                    int(bool(q.get("multiple"))),
                    q.get("weight"),
                ),
            )
    return template["id"]


def insert_scope(con: sqlite3.Connection, scope_id: str, template_id: str, unit_id: str, unit_name: str,
                 *, group_id: Optional[str] = None, group_name: Optional[str] = None) -> str:
    at = now_iso()
    con.execute("INSERT OR IGNORE INTO units(id, name) VALUES(?, ?)", (unit_id, unit_name))
    if group_id:
        con.execute("INSERT OR IGNORE INTO unit_groups(id, name) VALUES(?, ?)", (group_id, group_name or group_id))
    con.execute(
        """
        INSERT INTO scopes(id, template_id, unit_id, group_id, active, created_at, updated_at)
        VALUES(?, ?, ?, ?, 1, ?, ?)
        """,
        (scope_id, template_id, unit_id, group_id, at, at),
    )
    return scope_id


def seed_demo() -> None:
    with db_conn() as con:
        exists = con.execute("SELECT 1 FROM templates WHERE id = 'tpl-limpeza'").fetchone()
        if exists:
            return
        with transaction(con):
            insert_template(
                con,
                {
                    "id": "tpl-limpeza",
                    "title": "Checklist de Limpeza",
                    "description": "Inspeção diária de limpeza e conservação.",
                    "groups": [
                        {
                            "id": "grp-areas",
                            "title": "Áreas comuns",
                            "questions": [
                                {"id": "q-piso", "title": "Piso limpo?", "type": "BOOLEAN", "required": True, "weight": 2},
                                {"id": "q-obs", "title": "Responsável no local", "type": "TEXT", "required": True, "weight": 1},
                                {"id": "q-fotos", "title": "Fotos do ambiente", "type": "PHOTO", "multiple": True},
                            ],
                        },
                        {
                            "id": "grp-insumos",
                            "title": "Insumos",
                            "questions": [
                                {"id": "q-estoque", "title": "Itens em estoque", "type": "NUMBER", "weight": 1},
                                {"id": "q-estado", "title": "Estado geral", "type": "SINGLE_CHOICE",
                                 "options": ["Bom", "Regular", "Ruim"], "weight": 1},
                            ],
                        },
                    ],
                },
            )
            insert_scope(con, "esc-centro", "tpl-limpeza", "un-centro", "Unidade Centro")
            insert_user(con, "sup-1", "Supervisor Demo", "SUPERVISOR", email="supervisor@example.com",
                        phone="5511999990000", unit_ids=["un-centro"])
            insert_user(con, "ops-1", "Operacional Demo", "OPERACIONAL", email="operacional@example.com")
            insert_user(con, "adm-1", "Admin Demo", "ADMIN", email="admin@example.com")
