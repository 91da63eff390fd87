from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from fastapi import Depends, Header

from .db import db_conn, load_user, load_user_unit_ids
from .errors import ForbiddenError, SCOPE_EMPTY, UNIT_OUT_OF_SCOPE, UnauthenticatedError

# Field roles whose access is narrowed to their configured units.
RESTRICTED_ROLES = {"SUPERVISOR", "LAVAGEM"}

POLICY: dict[str, dict[str, set[str]]] = {
    "checklists": {
        "create": {"MASTER", "ADMIN", "OPERACIONAL", "SUPERVISOR", "LAVAGEM"},
        "update": {"MASTER", "ADMIN", "OPERACIONAL", "GERENTE"},
        "list": {"MASTER", "ADMIN", "OPERACIONAL", "SUPERVISOR", "LAVAGEM", "GERENTE"},
        "export": {"MASTER", "ADMIN", "OPERACIONAL"},
    },
}


@dataclass
class CurrentUser:
    id: str
    name: str
    role: str
    email: Optional[str] = None
    phone: Optional[str] = None
    unit_ids: list[str] = field(default_factory=list)

    @property
    def restricted(self) -> bool:
        return self.role in RESTRICTED_ROLES


def can(role: str, resource: str, action: str) -> bool:
    return (role or "").upper() in POLICY.get(resource, {}).get(action, set())


def require_capability(user: CurrentUser, action: str, resource: str = "checklists") -> None:
    if not can(user.role, resource, action):
        raise ForbiddenError(f"Sem permissão para {action} em {resource}.")


def ensure_unit_in_scope(user: CurrentUser, unit_id: str) -> None:
    """Restricted field roles may only act on the units configured for them."""
    if not user.restricted:
        return
    if not user.unit_ids:
        raise ForbiddenError(
            "Nenhuma unidade configurada para o seu usuário.",
            sub_code=SCOPE_EMPTY,
        )
    if unit_id not in user.unit_ids:
        raise ForbiddenError(
            "Unidade fora do seu escopo de atuação.",
            sub_code=UNIT_OUT_OF_SCOPE,
        )


def load_current_user(user_id: str) -> CurrentUser:
    with db_conn() as con:
        row = load_user(con, user_id)
        if not row or not row["is_active"]:
            raise UnauthenticatedError(f"Usuário desconhecido: {user_id}")
        role = str(row["role"] or "").strip().upper()
        unit_ids = load_user_unit_ids(con, row["id"]) if role in RESTRICTED_ROLES else []
    return CurrentUser(
        id=row["id"],
        name=row["name"],
        role=role,
        email=row["email"],
        phone=row["phone"],
        unit_ids=unit_ids,
    )


def get_current_user(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> CurrentUser:
    uid = (x_user_id or "").strip()
    if not uid:
        raise UnauthenticatedError("Cabeçalho X-User-Id ausente.")
    return load_current_user(uid)


def require(action: str) -> Callable[..., CurrentUser]:
    def _dep(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        require_capability(user, action)
        return user

    return _dep
