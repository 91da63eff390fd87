from __future__ import annotations

import importlib
import io
import sys
from types import SimpleNamespace

import pytest
from PIL import Image

MODULES = (
    "config",
    "errors",
    "schema",
    "schemas",
    "answers",
    "db",
    "protocol",
    "storage",
    "auth",
    "notify",
    "reconciler",
    "report",
    "export",
    "services",
)

TEMPLATE = {
    "id": "tpl-1",
    "title": "Inspeção de Limpeza",
    "description": "Checklist diário das áreas comuns.",
    "groups": [
        {
            "id": "g-1",
            "title": "Áreas comuns",
            "questions": [
                {"id": "q-nome", "title": "Nome", "type": "TEXT", "required": True},
                {"id": "q-conforme", "title": "Conforme?", "type": "BOOLEAN", "required": True},
                {"id": "q-qtd", "title": "Quantidade", "type": "NUMBER", "weight": 2},
                {"id": "q-estado", "title": "Estado", "type": "SINGLE_CHOICE",
                 "options": ["Bom", "Ruim"], "weight": 1},
            ],
        },
        {
            "id": "g-2",
            "title": "Registros",
            "questions": [
                {"id": "q-foto", "title": "Fotos", "type": "FOTO", "multiple": True},
                {"id": "q-fachada", "title": "Foto da fachada", "type": "PHOTO", "required": True},
            ],
        },
    ],
}


def png_bytes(color: str = "red", size: tuple[int, int] = (40, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def ck(tmp_path, monkeypatch):
    monkeypatch.setenv("CHECKLIST_DB_PATH", str(tmp_path / "checklists.db"))
    monkeypatch.setenv("CHECKLIST_UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("CHECKLIST_PUBLIC_BASE_URL", "http://testserver/uploads")
    monkeypatch.setenv("CHECKLIST_DOWNLOAD_SECRET", "D" * 32)
    monkeypatch.delenv("CHECKLIST_DEBUG", raising=False)
    monkeypatch.delenv("CHECKLIST_REQUIRE_PHOTO_ON_FINAL", raising=False)
    monkeypatch.delenv("CHECKLIST_EMAIL_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("CHECKLIST_WHATSAPP_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("CHECKLIST_SEED_DEMO", raising=False)

    for name in [n for n in sys.modules if n == "checklists" or n.startswith("checklists.")]:
        sys.modules.pop(name, None)

    ns = SimpleNamespace(**{name: importlib.import_module(f"checklists.{name}") for name in MODULES})
    ns.tmp_path = tmp_path

    db = ns.db
    db.init_db()
    with db.db_conn() as con:
        with db.transaction(con):
            db.insert_template(con, TEMPLATE)
            db.insert_scope(con, "esc-1", "tpl-1", "un-1", "Unidade Centro", group_id="grp-1", group_name="Grupo Sul")
            db.insert_scope(con, "esc-2", "tpl-1", "un-2", "Unidade Norte")
            db.insert_user(con, "sup-1", "Supervisor Um", "SUPERVISOR", email="sup1@example.com",
                           phone="5511999990001", unit_ids=["un-1"])
            db.insert_user(con, "sup-2", "Supervisor Dois", "SUPERVISOR", unit_ids=["un-1"])
            db.insert_user(con, "sup-empty", "Supervisor Sem Escopo", "SUPERVISOR")
            db.insert_user(con, "ops-1", "Operacional Um", "OPERACIONAL", email="ops1@example.com")
            db.insert_user(con, "ger-1", "Gerente Um", "GERENTE", email="gerente@example.com")
            db.insert_user(con, "adm-1", "Admin Um", "ADMIN")
    return ns


@pytest.fixture()
def storage(ck):
    return ck.storage.LocalObjectStorage(
        ck.tmp_path / "objects",
        "http://testserver/uploads",
        secret="S" * 32,
        max_age=60,
    )


def actor(ns, user_id: str):
    return ns.auth.load_current_user(user_id)


def payloads(ns, *items: dict) -> list:
    return [ns.schemas.AnswerPayload.model_validate(item) for item in items]
