from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone

import pytest

from conftest import actor, payloads, png_bytes

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)

FACHADA_URL = "https://cdn.example/fachada.jpg"


def _reconciler(ck, storage, **kwargs):
    kwargs.setdefault("clock", lambda: NOW)
    return ck.reconciler.SubmissionReconciler(storage, **kwargs)


def _complete(ck, *, photo=True, more=()):
    items = [
        {"perguntaId": "q-nome", "tipo": "TEXT", "valorTexto": "Ana"},
        {"perguntaId": "q-conforme", "tipo": "BOOLEAN", "valorBoolean": True},
    ]
    if photo:
        items.append({"perguntaId": "q-fachada", "fotoUrl": FACHADA_URL})
    items.extend(more)
    return payloads(ck, *items)


def _submit(ck, rec, user_id, answers, *, is_draft, scope_id="esc-1", **kwargs):
    inp = ck.reconciler.SubmissionInput(scope_id=scope_id, answers=answers, is_draft=is_draft, **kwargs)
    return asyncio.run(rec.save_submission(actor(ck, user_id), inp))


def _count(ck, sql, *params) -> int:
    with ck.db.db_conn() as con:
        return con.execute(sql, params).fetchone()[0]


def _stored_answers(ck, submission_id):
    with ck.db.db_conn() as con:
        schema = ck.schema.load_template_schema(con, "tpl-1")
        return {a.question_id: a for a in ck.db.load_answers(con, submission_id, schema)}


def test_draft_ignores_missing_required_answers(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    result = _submit(ck, rec, "sup-1", payloads(ck, {"perguntaId": "q-qtd", "valorNumero": "7"}), is_draft=True)

    assert result.is_draft is True
    assert result.protocol is None
    assert result.event is None
    assert result.submission["status"] == "DRAFT"
    assert [a["perguntaId"] for a in result.answers] == ["q-qtd"]
    assert result.answers[0]["pergunta"] == {"id": "q-qtd", "tipo": "NUMBER"}


def test_final_names_first_missing_question_in_declaration_order(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    answers = payloads(ck, {"perguntaId": "q-nome", "tipo": "TEXT", "valorTexto": ""})

    with pytest.raises(ck.errors.ValidationError) as err:
        _submit(ck, rec, "sup-1", answers, is_draft=False)

    assert err.value.question_title == "Nome"
    assert _count(ck, "SELECT COUNT(*) FROM submissions") == 0
    assert _count(ck, "SELECT COUNT(*) FROM answers") == 0


def test_final_with_boolean_false_is_finalized(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    answers = payloads(
        ck,
        {"perguntaId": "q-nome", "valorTexto": "Ana"},
        {"perguntaId": "q-conforme", "valorBoolean": False},
        {"perguntaId": "q-fachada", "fotoUrl": FACHADA_URL},
    )
    result = _submit(ck, rec, "sup-1", answers, is_draft=False)

    assert result.submission["status"] == "FINALIZED"
    assert re.fullmatch(r"KL-20261019-[0-9A-F]{8}", result.protocol)
    assert result.submission["hash"]
    stored = _stored_answers(ck, result.submission["id"])
    assert stored["q-conforme"].value is False
    assert stored["q-conforme"].observation is None

    with ck.db.db_conn() as con:
        scope = ck.schema.load_scope(con, "esc-1")
    assert scope.last_supervisor_id == "sup-1"
    assert scope.last_submitted_at == "2026-10-19T12:00:00.000Z"

    assert result.event.protocol == result.protocol
    assert result.event.unit_name == "Unidade Centro"
    assert "respostas" not in result.to_wire()["resposta"]


def test_repeated_draft_saves_keep_a_single_row(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    first = _submit(ck, rec, "sup-1", payloads(ck, {"perguntaId": "q-nome", "valorTexto": "Ana"}), is_draft=True)
    second = _submit(ck, rec, "sup-1", payloads(ck, {"perguntaId": "q-nome", "valorTexto": "Bia"}), is_draft=True,
                     observations="segunda versão")

    assert first.submission["id"] == second.submission["id"]
    assert second.submission["observacoes"] == "segunda versão"
    assert _count(ck, "SELECT COUNT(*) FROM submissions") == 1
    assert _stored_answers(ck, first.submission["id"])["q-nome"].text == "Bia"


def test_draft_then_final_promotes_the_same_row(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    draft = _submit(ck, rec, "sup-1", payloads(ck, {"perguntaId": "q-nome", "valorTexto": "Ana"}), is_draft=True)
    final = _submit(ck, rec, "sup-1", _complete(ck), is_draft=False)

    assert final.submission["id"] == draft.submission["id"]
    assert _count(ck, "SELECT COUNT(*) FROM submissions WHERE status = 'DRAFT'") == 0
    # a new draft can be opened once the previous one was finalized
    again = _submit(ck, rec, "sup-1", payloads(ck, {"perguntaId": "q-nome", "valorTexto": "Caio"}), is_draft=True)
    assert again.submission["id"] != final.submission["id"]


def test_photos_are_carried_forward_across_saves(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    Upload = ck.storage.Upload
    first = _submit(
        ck,
        rec,
        "sup-1",
        payloads(ck, {"perguntaId": "q-nome", "valorTexto": "Ana"}),
        is_draft=True,
        files={
            "foto_q-foto_0": Upload(png_bytes("red"), "a.png", "image/png"),
            "foto_q-foto_1": Upload(png_bytes("blue"), "b.png", "image/png"),
            "foto_q-fachada": Upload(png_bytes("green"), "c.png", "image/png"),
        },
    )
    stored = _stored_answers(ck, first.submission["id"])
    assert len(stored["q-foto"].photos) == 2
    assert len(stored["q-fachada"].photos) == 1
    for url in stored["q-foto"].photos:
        assert url.startswith("http://testserver/uploads/checklists/tpl-1/")
        assert url.endswith(".png")

    # second draft neither resends the URLs nor mentions the photo questions
    second = _submit(ck, rec, "sup-1", payloads(ck, {"perguntaId": "q-nome", "valorTexto": "Bia"}), is_draft=True)
    kept = _stored_answers(ck, second.submission["id"])
    assert kept["q-foto"].photos == stored["q-foto"].photos
    assert kept["q-fachada"].photos == stored["q-fachada"].photos

    # a new upload without echoed URLs is appended to what is stored
    third = _submit(
        ck,
        rec,
        "sup-1",
        payloads(ck, {"perguntaId": "q-foto"}),
        is_draft=True,
        files={"foto_q-foto_0": Upload(png_bytes("yellow"), "d.png", "image/png")},
    )
    grown = _stored_answers(ck, third.submission["id"])["q-foto"].photos
    assert grown[:2] == stored["q-foto"].photos
    assert len(grown) == 3

    final = _submit(ck, rec, "sup-1", _complete(ck), is_draft=False)
    assert len(_stored_answers(ck, final.submission["id"])["q-foto"].photos) == 3


def test_indexed_uploads_stop_at_first_gap(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    Upload = ck.storage.Upload
    result = _submit(
        ck,
        rec,
        "sup-1",
        payloads(ck, {"perguntaId": "q-foto"}),
        is_draft=True,
        files={
            "foto_q-foto_0": Upload(png_bytes(), "a.png", "image/png"),
            "foto_q-foto_2": Upload(png_bytes(), "c.png", "image/png"),
        },
    )
    assert len(_stored_answers(ck, result.submission["id"])["q-foto"].photos) == 1


def test_evidence_photos_and_justification_on_boolean(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    Upload = ck.storage.Upload
    answers = payloads(
        ck,
        {"perguntaId": "q-nome", "valorTexto": "Ana"},
        {"perguntaId": "q-conforme", "valorBoolean": False, "nota": 2},
        {"perguntaId": "q-fachada", "fotoUrl": FACHADA_URL},
    )
    result = _submit(
        ck,
        rec,
        "sup-1",
        answers,
        is_draft=False,
        files={"foto_anexada_q-conforme_0": Upload(png_bytes(), "e.png", "image/png")},
        justifications={"q-conforme": '{"motivo": "Piso molhado", "resolucao": "Sinalizado"}'},
    )
    answer = _stored_answers(ck, result.submission["id"])["q-conforme"]
    assert answer.value is False
    assert answer.score == 2
    assert answer.observation == "Motivo: Piso molhado\n\nO que foi feito para resolver: Sinalizado"
    assert len(answer.photos) == 1
    assert "/checklists/tpl-1/anexadas/" in answer.photos[0]


def test_mismatched_draft_id_is_ignored(ck, storage, caplog) -> None:
    rec = _reconciler(ck, storage)
    first = _submit(ck, rec, "sup-1", payloads(ck, {"perguntaId": "q-nome", "valorTexto": "Ana"}), is_draft=True)
    with caplog.at_level(logging.WARNING, logger="checklists.reconciler"):
        second = _submit(ck, rec, "sup-1", payloads(ck, {"perguntaId": "q-nome", "valorTexto": "Bia"}),
                         is_draft=True, draft_id="outro-id")
    assert second.submission["id"] == first.submission["id"]
    assert "Ignoring respostaId outro-id" in caplog.text


def test_get_draft_is_scoped_to_the_caller(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    saved = _submit(ck, rec, "sup-1", payloads(ck, {"perguntaId": "q-nome", "valorTexto": "Ana"}), is_draft=True)

    mine = asyncio.run(rec.get_draft("esc-1", actor(ck, "sup-1")))
    theirs = asyncio.run(rec.get_draft("esc-1", actor(ck, "sup-2")))
    assert mine["id"] == saved.submission["id"]
    assert mine["respostas"][0]["valorTexto"] == "Ana"
    assert theirs is None


def test_scope_errors_have_distinct_sub_codes(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    with pytest.raises(ck.errors.ForbiddenError) as empty:
        _submit(ck, rec, "sup-empty", _complete(ck), is_draft=True)
    assert empty.value.sub_code == "scope_vazio"

    with pytest.raises(ck.errors.ForbiddenError) as outside:
        _submit(ck, rec, "sup-1", _complete(ck), is_draft=True, scope_id="esc-2")
    assert outside.value.sub_code == "unidade_fora_do_escopo"

    with pytest.raises(ck.errors.NotFoundError):
        _submit(ck, rec, "adm-1", _complete(ck), is_draft=True, scope_id="nao-existe")


def test_inactive_template_is_not_found(ck, storage) -> None:
    with ck.db.db_conn() as con:
        con.execute("UPDATE templates SET active = 0 WHERE id = 'tpl-1'")
    rec = _reconciler(ck, storage)
    with pytest.raises(ck.errors.NotFoundError):
        _submit(ck, rec, "sup-1", _complete(ck), is_draft=True)


def test_required_photo_blocks_finalization_by_default(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    with pytest.raises(ck.errors.ValidationError) as err:
        _submit(ck, rec, "sup-1", _complete(ck, photo=False), is_draft=False)
    assert err.value.question_id == "q-fachada"
    assert err.value.question_title == "Foto da fachada"
    assert _count(ck, "SELECT COUNT(*) FROM submissions") == 0

    lenient = _reconciler(ck, storage, require_photo_on_final=False)
    result = _submit(ck, lenient, "sup-1", _complete(ck, photo=False), is_draft=False)
    assert result.submission["status"] == "FINALIZED"
    assert "q-fachada" not in _stored_answers(ck, result.submission["id"])


class _FlakyStorage:
    """Delegates to a real store but fails uploads under some prefixes."""

    def __init__(self, inner, failing_prefixes):
        self.inner = inner
        self.failing_prefixes = failing_prefixes

    async def put_bytes(self, data, *, prefix, filename, content_type):
        if prefix.startswith(self.failing_prefixes):
            raise OSError("bucket unavailable")
        return await self.inner.put_bytes(data, prefix=prefix, filename=filename, content_type=content_type)

    async def get_bytes(self, url):
        return await self.inner.get_bytes(url)

    def read_bytes(self, url):
        return self.inner.read_bytes(url)

    def download_url(self, url):
        return self.inner.download_url(url)


def test_signature_upload_failure_does_not_block_finalization(ck, storage) -> None:
    rec = _reconciler(ck, _FlakyStorage(storage, ("checklists/assinaturas",)))
    result = _submit(
        ck,
        rec,
        "sup-1",
        _complete(ck),
        is_draft=False,
        supervisor_signature=ck.storage.Upload(png_bytes(), "selfie.jpg", "image/jpeg"),
        manager_signature_data_url="data:image/png;base64,iVBORw0KGgo=",
    )
    assert result.submission["status"] == "FINALIZED"
    assert result.submission["assinaturaFotoUrl"] is None
    assert result.submission["gerenteAssinaturaFotoUrl"] is None


def test_signatures_are_stored_on_finalization(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    result = _submit(
        ck,
        rec,
        "sup-1",
        _complete(ck),
        is_draft=False,
        supervisor_signature=ck.storage.Upload(png_bytes(), "selfie.jpg", "image/jpeg"),
        manager_signature_data_url="data:image/png;base64,iVBORw0KGgo=",
    )
    sup_url = result.submission["assinaturaFotoUrl"]
    assert sup_url.startswith("http://testserver/uploads/checklists/assinaturas/esc-1/assinatura-")
    assert sup_url.endswith("-sup-1.jpg")
    assert "/checklists/assinaturas-gerente/esc-1/" in result.submission["gerenteAssinaturaFotoUrl"]
    assert result.submission["gerenteAssinadoEm"] == "2026-10-19T12:00:00.000Z"


def test_failed_photo_upload_leaves_required_photo_missing(ck, storage, caplog) -> None:
    rec = _reconciler(ck, _FlakyStorage(storage, ("checklists/tpl-1",)))
    with caplog.at_level(logging.WARNING, logger="checklists.reconciler"):
        with pytest.raises(ck.errors.ValidationError) as err:
            _submit(
                ck,
                rec,
                "sup-1",
                _complete(ck, photo=False),
                is_draft=False,
                files={"foto_q-fachada": ck.storage.Upload(png_bytes(), "f.png", "image/png")},
            )
    assert err.value.question_title == "Foto da fachada"
    assert "Photo upload failed for question q-fachada" in caplog.text
    assert _count(ck, "SELECT COUNT(*) FROM submissions") == 0


def test_failed_optional_photo_upload_skips_the_answer(ck, storage, caplog) -> None:
    rec = _reconciler(ck, _FlakyStorage(storage, ("checklists/tpl-1",)))
    with caplog.at_level(logging.WARNING, logger="checklists.reconciler"):
        result = _submit(
            ck,
            rec,
            "sup-1",
            _complete(ck),
            is_draft=False,
            files={"foto_q-foto_0": ck.storage.Upload(png_bytes(), "f.png", "image/png")},
        )
    stored = _stored_answers(ck, result.submission["id"])
    assert "q-foto" not in stored
    assert stored["q-fachada"].photos == [FACHADA_URL]
    assert "Photo upload failed for question q-foto" in caplog.text


class _ConcurrencyStorage:
    """Counts how many uploads are in flight at once."""

    def __init__(self, inner):
        self.inner = inner
        self.in_flight = 0
        self.peak = 0
        self.prefixes = []

    async def put_bytes(self, data, *, prefix, filename, content_type):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        self.prefixes.append(prefix)
        try:
            await asyncio.sleep(0.01)
            return await self.inner.put_bytes(data, prefix=prefix, filename=filename, content_type=content_type)
        finally:
            self.in_flight -= 1

    async def get_bytes(self, url):
        return await self.inner.get_bytes(url)

    def read_bytes(self, url):
        return self.inner.read_bytes(url)

    def download_url(self, url):
        return self.inner.download_url(url)


def test_photos_and_signatures_upload_in_one_batch(ck, storage) -> None:
    counting = _ConcurrencyStorage(storage)
    rec = _reconciler(ck, counting)
    result = _submit(
        ck,
        rec,
        "sup-1",
        _complete(ck, photo=False),
        is_draft=False,
        files={"foto_q-fachada": ck.storage.Upload(png_bytes(), "f.png", "image/png")},
        supervisor_signature=ck.storage.Upload(png_bytes(), "selfie.jpg", "image/jpeg"),
        manager_signature_data_url="data:image/png;base64,iVBORw0KGgo=",
    )
    assert result.submission["status"] == "FINALIZED"
    assert sorted(counting.prefixes) == [
        "checklists/assinaturas-gerente/esc-1",
        "checklists/assinaturas/esc-1",
        "checklists/tpl-1",
    ]
    assert counting.peak == 3


def test_oversized_upload_is_rejected(ck, storage) -> None:
    rec = _reconciler(ck, storage, max_upload_bytes=10)
    with pytest.raises(ck.errors.ValidationError) as err:
        _submit(
            ck,
            rec,
            "sup-1",
            _complete(ck),
            is_draft=True,
            files={"foto_q-fachada": ck.storage.Upload(png_bytes(), "f.png", "image/png")},
        )
    assert err.value.question_id == "q-fachada"


def test_debug_flag_gates_tracing(ck, storage, caplog) -> None:
    quiet = _reconciler(ck, storage)
    with caplog.at_level(logging.DEBUG, logger="checklists.reconciler"):
        _submit(ck, quiet, "sup-1", _complete(ck), is_draft=True)
    assert not [r for r in caplog.records if r.levelno == logging.DEBUG]

    caplog.clear()
    verbose = _reconciler(ck, storage, debug=True)
    with caplog.at_level(logging.DEBUG, logger="checklists.reconciler"):
        _submit(ck, verbose, "sup-1", _complete(ck), is_draft=True)
    messages = [r.getMessage() for r in caplog.records if r.levelno == logging.DEBUG]
    assert any(m.startswith("save_submission scope=esc-1") for m in messages)
    assert any(m.startswith("carry forward:") for m in messages)


def test_finalize_draft_flow(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    draft = _submit(ck, rec, "sup-1", _complete(ck), is_draft=True,
                    capture=ck.reconciler.CaptureMeta(lat=-23.5, lng=-46.6, device_id="dev-1"))
    draft_id = draft.submission["id"]

    with pytest.raises(ck.errors.ForbiddenError):
        asyncio.run(rec.finalize_draft(actor(ck, "sup-2"), draft_id))

    result = asyncio.run(rec.finalize_draft(actor(ck, "sup-1"), draft_id))
    assert result.submission["status"] == "FINALIZED"
    assert result.submission["lat"] == -23.5
    assert result.submission["deviceId"] == "dev-1"
    expected = ck.protocol.generate_protocol(NOW, "sup-1", "un-1", "tpl-1", "esc-1", None, "dev-1")
    assert result.protocol == expected.protocol

    with pytest.raises(ck.errors.ValidationError) as err:
        asyncio.run(rec.finalize_draft(actor(ck, "sup-1"), draft_id))
    assert err.value.message == "Este checklist não está em rascunho"

    with pytest.raises(ck.errors.NotFoundError):
        asyncio.run(rec.finalize_draft(actor(ck, "sup-1"), "desconhecido"))


def test_finalize_draft_requires_answers(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    draft = _submit(ck, rec, "sup-1", payloads(ck, {"perguntaId": "q-nome", "valorTexto": "Ana"}), is_draft=True)
    with pytest.raises(ck.errors.ValidationError) as err:
        asyncio.run(rec.finalize_draft(actor(ck, "sup-1"), draft.submission["id"]))
    assert err.value.question_title == "Conforme?"


def test_manager_signature(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    final = _submit(ck, rec, "sup-1", _complete(ck), is_draft=False)
    sid = final.submission["id"]

    with pytest.raises(ck.errors.ForbiddenError):
        asyncio.run(rec.add_manager_signature(actor(ck, "sup-1"), sid, "data:image/png;base64,iVBORw0KGgo="))
    with pytest.raises(ck.errors.ValidationError) as err:
        asyncio.run(rec.add_manager_signature(actor(ck, "ger-1"), sid, ""))
    assert err.value.message == "Assinatura é obrigatória"
    with pytest.raises(ck.errors.NotFoundError):
        asyncio.run(rec.add_manager_signature(actor(ck, "ger-1"), "desconhecido", "data:image/png;base64,AAAA"))

    signed = asyncio.run(rec.add_manager_signature(actor(ck, "ger-1"), sid, "data:image/png;base64,iVBORw0KGgo="))
    assert signed["gerenteAssinaturaFotoUrl"].endswith(".png")
    assert signed["gerenteAssinadoPor"] == {"id": "ger-1", "name": "Gerente Um", "email": "gerente@example.com"}
    assert signed["protocolo"] == final.protocol
    assert signed["hash"] == final.submission["hash"]


def test_demo_seed_is_usable_and_idempotent(ck, storage, monkeypatch) -> None:
    monkeypatch.setattr(ck.config, "DB_PATH", ck.tmp_path / "demo.db")
    ck.db.init_db()
    ck.db.seed_demo()
    ck.db.seed_demo()
    assert _count(ck, "SELECT COUNT(*) FROM templates") == 1

    rec = _reconciler(ck, storage)
    answers = payloads(
        ck,
        {"perguntaId": "q-piso", "valorBoolean": True, "nota": 5},
        {"perguntaId": "q-obs", "valorTexto": "Carlos"},
    )
    result = _submit(ck, rec, "sup-1", answers, is_draft=False, scope_id="esc-centro")
    assert result.submission["status"] == "FINALIZED"
    assert result.event.supervisor_phone == "5511999990000"


def test_manager_signature_on_draft_survives_final_submit(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    draft = _submit(ck, rec, "sup-1", payloads(ck, {"perguntaId": "q-nome", "valorTexto": "Ana"}), is_draft=True)
    signed = asyncio.run(
        rec.add_manager_signature(actor(ck, "ger-1"), draft.submission["id"], "data:image/png;base64,iVBORw0KGgo=")
    )

    final = _submit(ck, rec, "sup-1", _complete(ck), is_draft=False)
    assert final.submission["id"] == draft.submission["id"]
    assert final.submission["gerenteAssinaturaFotoUrl"] == signed["gerenteAssinaturaFotoUrl"]
    assert final.submission["gerenteAssinadoPorId"] == "ger-1"
    assert final.submission["gerenteAssinadoEm"] == signed["gerenteAssinadoEm"]


def test_manager_signature_on_draft_survives_finalize_draft(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    draft = _submit(ck, rec, "sup-1", _complete(ck), is_draft=True)
    sid = draft.submission["id"]
    signed = asyncio.run(rec.add_manager_signature(actor(ck, "ger-1"), sid, "data:image/png;base64,iVBORw0KGgo="))

    result = asyncio.run(rec.finalize_draft(actor(ck, "sup-1"), sid))
    assert result.submission["status"] == "FINALIZED"
    assert result.submission["gerenteAssinaturaFotoUrl"] == signed["gerenteAssinaturaFotoUrl"]
    assert result.submission["gerenteAssinadoPorId"] == "ger-1"


def test_new_manager_signature_on_final_replaces_the_draft_one(ck, storage) -> None:
    rec = _reconciler(ck, storage)
    draft = _submit(ck, rec, "sup-1", payloads(ck, {"perguntaId": "q-nome", "valorTexto": "Ana"}), is_draft=True)
    signed = asyncio.run(
        rec.add_manager_signature(actor(ck, "ger-1"), draft.submission["id"], "data:image/png;base64,iVBORw0KGgo=")
    )

    final = _submit(ck, rec, "sup-1", _complete(ck), is_draft=False,
                    manager_signature_data_url="data:image/png;base64,AAAA")
    assert final.submission["gerenteAssinaturaFotoUrl"] != signed["gerenteAssinaturaFotoUrl"]
    assert "/checklists/assinaturas-gerente/esc-1/" in final.submission["gerenteAssinaturaFotoUrl"]
    assert final.submission["gerenteAssinadoPorId"] is None
