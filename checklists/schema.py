from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .errors import NotFoundError


class QuestionType(str, Enum):
    TEXT = "TEXT"
    PHOTO = "PHOTO"
    BOOLEAN = "BOOLEAN"
    NUMBER = "NUMBER"
    SINGLE_CHOICE = "SINGLE_CHOICE"


# Names still sent by the field app.
QUESTION_TYPE_ALIASES = {
    "TEXTO": QuestionType.TEXT,
    "FOTO": QuestionType.PHOTO,
    "BOOLEANO": QuestionType.BOOLEAN,
    "NUMERICO": QuestionType.NUMBER,
    "SELECAO": QuestionType.SINGLE_CHOICE,
}


def parse_question_type(raw: Any) -> QuestionType:
    key = str(raw or "").strip().upper()
    if key in QUESTION_TYPE_ALIASES:
        return QUESTION_TYPE_ALIASES[key]
    return QuestionType(key)


@dataclass(frozen=True)
class Question:
    id: str
    title: str
    type: QuestionType
    position: int
    required: bool = False
    description: Optional[str] = None
    options: tuple[str, ...] = ()
    allow_multiple_photos: bool = False
    weight: Optional[float] = None


@dataclass(frozen=True)
class QuestionGroup:
    id: str
    title: str
    position: int
    description: Optional[str] = None
    questions: tuple[Question, ...] = ()


@dataclass(frozen=True)
class TemplateSchema:
    id: str
    title: str
    description: Optional[str] = None
    active: bool = True
    groups: tuple[QuestionGroup, ...] = ()

    def questions(self) -> list[Question]:
        """All questions in declaration order: group position, then question position."""
        return [q for g in self.groups for q in g.questions]

    def question_map(self) -> dict[str, Question]:
        return {q.id: q for q in self.questions()}


@dataclass(frozen=True)
class Scope:
    id: str
    template_id: str
    unit_id: str
    unit_name: str = ""
    group_id: Optional[str] = None
    group_name: Optional[str] = None
    active: bool = True
    last_submitted_at: Optional[str] = None
    last_supervisor_id: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


def _options(raw: Any) -> tuple[str, ...]:
    if not raw:
        return ()
    try:
        items = json.loads(raw)
    except (TypeError, ValueError):
        return ()
    if not isinstance(items, list):
        return ()
    return tuple(str(x) for x in items if str(x).strip())


def load_scope(con: sqlite3.Connection, scope_id: str) -> Scope:
    row = con.execute(
        """
        SELECT s.id, s.template_id, s.unit_id, s.group_id, s.active,
               s.last_submitted_at, s.last_supervisor_id,
               u.name AS unit_name, g.name AS group_name
        FROM scopes s
        JOIN units u ON u.id = s.unit_id
        LEFT JOIN unit_groups g ON g.id = s.group_id
        WHERE s.id = ?
        """,
        (scope_id,),
    ).fetchone()
    if not row:
        raise NotFoundError("Escopo não encontrado.")
    return Scope(
        id=row["id"],
        template_id=row["template_id"],
        unit_id=row["unit_id"],
        unit_name=row["unit_name"] or "",
        group_id=row["group_id"],
        group_name=row["group_name"],
        active=bool(row["active"]),
        last_submitted_at=row["last_submitted_at"],
        last_supervisor_id=row["last_supervisor_id"],
    )


def load_template_schema(con: sqlite3.Connection, template_id: str) -> TemplateSchema:
    t = con.execute(
        "SELECT id, title, description, active FROM templates WHERE id = ?",
        (template_id,),
    ).fetchone()
    if not t:
        raise NotFoundError("Checklist não encontrado.")

    group_rows = con.execute(
        """
        SELECT id, title, description, position
        FROM template_groups
        WHERE template_id = ?
        ORDER BY position ASC, id ASC
        """,
        (template_id,),
    ).fetchall()
    question_rows = con.execute(
        """
        SELECT q.id, q.group_id, q.title, q.description, q.type, q.position,
               q.required, q.options_json, q.allow_multiple_photos, q.weight
        FROM questions q
        JOIN template_groups g ON g.id = q.group_id
        WHERE g.template_id = ?
        ORDER BY q.position ASC, q.id ASC
        """,
        (template_id,),
    ).fetchall()

    by_group: dict[str, list[Question]] = {}
    for r in question_rows:
        by_group.setdefault(r["group_id"], []).append(
            Question(
                id=r["id"],
                title=r["title"],
                type=parse_question_type(r["type"]),
                position=int(r["position"] or 0),
                required=bool(r["required"]),
                description=r["description"],
                options=_options(r["options_json"]),
                allow_multiple_photos=bool(r["allow_multiple_photos"]),
                weight=r["weight"],
            )
        )

    groups = tuple(
        QuestionGroup(
            id=g["id"],
            title=g["title"],
            position=int(g["position"] or 0),
            description=g["description"],
            questions=tuple(by_group.get(g["id"], [])),
        )
        for g in group_rows
    )
    return TemplateSchema(
        id=t["id"],
        title=t["title"],
        description=t["description"],
        active=bool(t["active"]),
        groups=groups,
    )


def resolve_schema(con: sqlite3.Connection, scope_id: str) -> tuple[Scope, TemplateSchema]:
    """
    Scope -> active template with groups/questions in ascending order.
    Unknown scope, unknown template or a deactivated template is NOT_FOUND.
    """
    scope = load_scope(con, scope_id)
    if not scope.active:
        raise NotFoundError("Escopo inativo.")
    schema = load_template_schema(con, scope.template_id)
    if not schema.active:
        raise NotFoundError("Checklist inativo.")
    return scope, schema
