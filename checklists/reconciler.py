from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from .answers import (
    Answer,
    answer_to_wire,
    attach_photos,
    carry_forward_photos,
    format_justification,
    missing_required,
    normalize_answer,
)
from .auth import CurrentUser, ensure_unit_in_scope, require_capability
from .db import (
    STATUS_DRAFT,
    db_conn,
    find_open_draft,
    load_answers,
    load_submission_row,
    load_user,
    mark_finalized,
    replace_answers,
    set_manager_signature,
    submission_to_wire,
    touch_scope,
    transaction,
    upsert_draft,
)
from .errors import ChecklistError, ForbiddenError, InternalError, NotFoundError, ValidationError
from .notify import FinalizedEvent
from .protocol import ProtocolStamp, generate_protocol, iso_timestamp
from .schema import Question, QuestionType, Scope, TemplateSchema, load_scope, load_template_schema, resolve_schema
from .schemas import AnswerPayload
from .storage import ObjectStorage, Upload, decode_data_url, object_name


@dataclass
class CaptureMeta:
    """Where and from what the submission was captured."""

    lat: Optional[float] = None
    lng: Optional[float] = None
    accuracy: Optional[float] = None
    address: Optional[str] = None
    device_id: Optional[str] = None
    user_agent: Optional[str] = None
    ip: Optional[str] = None


@dataclass
class SubmissionInput:
    scope_id: str
    answers: List[AnswerPayload]
    is_draft: bool = False
    observations: Optional[str] = None
    draft_id: Optional[str] = None
    capture: CaptureMeta = field(default_factory=CaptureMeta)
    # multipart parts keyed by field name: foto_<id>, foto_<id>_<i>, foto_anexada_<id>_<i>
    files: Mapping[str, Upload] = field(default_factory=dict)
    # raw observacao_<id> values
    justifications: Mapping[str, str] = field(default_factory=dict)
    supervisor_signature: Optional[Upload] = None
    manager_signature_data_url: Optional[str] = None


@dataclass
class SaveResult:
    submission: Dict[str, Any]
    is_draft: bool
    protocol: Optional[str] = None
    answers: List[Dict[str, Any]] = field(default_factory=list)
    event: Optional[FinalizedEvent] = None

    def to_wire(self) -> Dict[str, Any]:
        resposta = dict(self.submission)
        if self.is_draft:
            resposta["respostas"] = self.answers
        body: Dict[str, Any] = {"resposta": resposta, "isDraft": self.is_draft}
        if self.protocol:
            body["protocolo"] = self.protocol
        return body


def _indexed_uploads(files: Mapping[str, Upload], stem: str) -> List[Upload]:
    """`<stem>_0`, `<stem>_1`, ... read until the first gap."""
    out: List[Upload] = []
    i = 0
    while True:
        upload = files.get(f"{stem}_{i}")
        if upload is None or not upload.data:
            return out
        out.append(upload)
        i += 1


def _meta_from(observations: Optional[str], capture: CaptureMeta) -> Dict[str, Any]:
    text = (observations or "").strip()
    return {
        "observations": text or None,
        "lat": capture.lat,
        "lng": capture.lng,
        "accuracy": capture.accuracy,
        "address": capture.address,
        "ip": capture.ip or None,
        "user_agent": capture.user_agent,
        "device_id": capture.device_id,
    }


class SubmissionReconciler:
    """
    Turns a multipart checklist submission into exactly one DRAFT or
    FINALIZED row for (scope, supervisor), with normalized answers,
    uploaded photos and a protocol on finalization.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        *,
        logger: Optional[logging.Logger] = None,
        debug: bool = False,
        require_photo_on_final: bool = True,
        protocol_prefix: str = "KL",
        max_upload_bytes: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.storage = storage
        self.log = logger or logging.getLogger("checklists.reconciler")
        self.debug = debug
        self.require_photo_on_final = require_photo_on_final
        self.protocol_prefix = protocol_prefix
        self.max_upload_bytes = max_upload_bytes
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _trace(self, msg: str, *args: Any) -> None:
        if self.debug:
            self.log.debug(msg, *args)

    # -------------------------
    # draft lookup
    # -------------------------
    async def get_draft(self, scope_id: str, actor: CurrentUser) -> Optional[Dict[str, Any]]:
        def _load() -> Optional[Dict[str, Any]]:
            with db_conn() as con:
                scope, schema = resolve_schema(con, scope_id)
                ensure_unit_in_scope(actor, scope.unit_id)
                row = find_open_draft(con, scope.id, actor.id)
                if row is None:
                    return None
                answers = load_answers(con, row["id"], schema)
                wire = submission_to_wire(row)
                wire["respostas"] = self._answers_wire(schema, answers)
                return wire

        return await asyncio.to_thread(_load)

    @staticmethod
    def _answers_wire(schema: TemplateSchema, answers: List[Answer]) -> List[Dict[str, Any]]:
        questions = schema.question_map()
        return [answer_to_wire(a, questions[a.question_id]) for a in answers if a.question_id in questions]

    # -------------------------
    # submit / save draft
    # -------------------------
    async def save_submission(self, actor: CurrentUser, inp: SubmissionInput) -> SaveResult:
        scope, schema = await asyncio.to_thread(self._resolve, inp.scope_id)
        ensure_unit_in_scope(actor, scope.unit_id)
        self._trace(
            "save_submission scope=%s template=%s actor=%s draft=%s answers=%s",
            scope.id,
            schema.id,
            actor.id,
            inp.is_draft,
            len(inp.answers),
        )

        normalized = self._normalize(schema, inp)
        pending = self._pending_uploads(schema, inp)
        now = self.clock()
        signatures: List[Awaitable[Optional[str]]] = []
        if not inp.is_draft:
            signatures = [
                self._upload_supervisor_signature(scope.id, actor.id, inp.supervisor_signature, now),
                self._upload_manager_signature(scope.id, inp.manager_signature_data_url, now),
            ]
        answers, signed = await self._upload_and_attach(schema, normalized, pending, signatures)

        sup_url: Optional[str] = None
        mgr_url: Optional[str] = None
        stamp: Optional[ProtocolStamp] = None
        if not inp.is_draft:
            sup_url, mgr_url = signed
            stamp = generate_protocol(
                now,
                actor.id,
                scope.unit_id,
                schema.id,
                scope.id,
                inp.capture.ip,
                inp.capture.device_id,
                prefix=self.protocol_prefix,
            )
            self._trace("protocol %s canonical=%s", stamp.protocol, stamp.canonical)

        row, stored = await asyncio.to_thread(
            self._persist,
            actor,
            scope,
            schema,
            inp,
            answers,
            stamp,
            sup_url,
            mgr_url,
            iso_timestamp(now),
        )
        self.log.info(
            "Checklist %s saved: submission=%s status=%s answers=%s protocol=%s",
            schema.id,
            row["id"],
            row["status"],
            len(stored),
            row["protocol"] or "-",
        )

        result = SaveResult(
            submission=submission_to_wire(row),
            is_draft=inp.is_draft,
            protocol=row["protocol"],
        )
        if inp.is_draft:
            result.answers = self._answers_wire(schema, stored)
        else:
            result.event = self._event(actor, scope, schema, row)
        return result

    def _resolve(self, scope_id: str) -> tuple[Scope, TemplateSchema]:
        with db_conn() as con:
            return resolve_schema(con, scope_id)

    def _normalize(self, schema: TemplateSchema, inp: SubmissionInput) -> Dict[str, Optional[Answer]]:
        payloads: Dict[str, AnswerPayload] = {}
        for payload in inp.answers:
            payloads[payload.pergunta_id] = payload

        out: Dict[str, Optional[Answer]] = {}
        for question in schema.questions():
            payload = payloads.get(question.id)
            raw_obs = inp.justifications.get(question.id)
            if raw_obs is None and payload is not None:
                raw_obs = payload.observacao
            answer = normalize_answer(
                question,
                payload,
                is_draft=inp.is_draft,
                observation=format_justification(raw_obs),
            )
            self._trace("question %s (%s) -> %r", question.id, question.type.value, answer)
            out[question.id] = answer
        return out

    def _check_size(self, question: Question, upload: Upload) -> None:
        if self.max_upload_bytes and len(upload.data) > self.max_upload_bytes:
            raise ValidationError(
                f'Arquivo muito grande para "{question.title}".',
                question_id=question.id,
                question_title=question.title,
            )

    def _pending_uploads(self, schema: TemplateSchema, inp: SubmissionInput) -> List[tuple[str, str, Upload, str]]:
        pending: List[tuple[str, str, Upload, str]] = []
        for question in schema.questions():
            if question.type is QuestionType.PHOTO:
                if question.allow_multiple_photos:
                    photos = _indexed_uploads(inp.files, f"foto_{question.id}")
                else:
                    single = inp.files.get(f"foto_{question.id}")
                    photos = [single] if single is not None and single.data else []
            else:
                photos = []
            evidence = _indexed_uploads(inp.files, f"foto_anexada_{question.id}")

            for upload in photos:
                self._check_size(question, upload)
                pending.append((question.id, "photo", upload, f"checklists/{schema.id}"))
            for upload in evidence:
                self._check_size(question, upload)
                pending.append((question.id, "evidence", upload, f"checklists/{schema.id}/anexadas"))
        return pending

    async def _upload_and_attach(
        self,
        schema: TemplateSchema,
        normalized: Dict[str, Optional[Answer]],
        pending: List[tuple[str, str, Upload, str]],
        signatures: Sequence[Awaitable[Optional[str]]] = (),
    ) -> tuple[List[Answer], List[Optional[str]]]:
        """Upload photos and signatures in one batch; returns answers and signature URLs."""
        results = await asyncio.gather(
            *(self._store_photo(upload, prefix) for _, _, upload, prefix in pending),
            *signatures,
            return_exceptions=True,
        )
        photo_results = results[: len(pending)]
        # signature helpers log and swallow their own failures
        signed = [None if isinstance(r, BaseException) else r for r in results[len(pending):]]

        uploaded: Dict[str, List[str]] = {}
        attached: Dict[str, List[str]] = {}
        for (question_id, kind, _, _), result in zip(pending, photo_results):
            if isinstance(result, BaseException):
                self.log.warning("Photo upload failed for question %s (%s): %s", question_id, kind, result)
                continue
            target = uploaded if kind == "photo" else attached
            target.setdefault(question_id, []).append(result)

        answers: List[Answer] = []
        for question in schema.questions():
            answer = attach_photos(
                question,
                normalized.get(question.id),
                uploaded.get(question.id, []),
                attached.get(question.id, []),
            )
            if answer is not None:
                answers.append(answer)
        return answers, signed

    async def _store_photo(self, upload: Upload, prefix: str) -> str:
        return await self.storage.put_bytes(
            upload.data,
            prefix=prefix,
            filename=object_name(upload.data, upload.filename),
            content_type=upload.content_type or "image/jpeg",
        )

    async def _upload_supervisor_signature(
        self, scope_id: str, actor_id: str, upload: Optional[Upload], now: datetime
    ) -> Optional[str]:
        if upload is None or not upload.data:
            return None
        try:
            return await self.storage.put_bytes(
                upload.data,
                prefix=f"checklists/assinaturas/{scope_id}",
                filename=f"assinatura-{int(now.timestamp() * 1000)}-{actor_id}.jpg",
                content_type=upload.content_type or "image/jpeg",
            )
        except Exception:
            self.log.exception("Supervisor signature upload failed for scope %s", scope_id)
            return None

    async def _upload_manager_signature(self, scope_id: str, data_url: Optional[str], now: datetime) -> Optional[str]:
        if not (data_url or "").strip():
            return None
        try:
            data = decode_data_url(data_url or "")
            return await self.storage.put_bytes(
                data,
                prefix=f"checklists/assinaturas-gerente/{scope_id}",
                filename=f"assinatura-gerente-{int(now.timestamp() * 1000)}-{scope_id}.png",
                content_type="image/png",
            )
        except Exception:
            self.log.exception("Manager signature upload failed for scope %s", scope_id)
            return None

    def _persist(
        self,
        actor: CurrentUser,
        scope: Scope,
        schema: TemplateSchema,
        inp: SubmissionInput,
        answers: List[Answer],
        stamp: Optional[ProtocolStamp],
        sup_url: Optional[str],
        mgr_url: Optional[str],
        at: str,
    ) -> tuple[sqlite3.Row, List[Answer]]:
        with db_conn() as con:
            try:
                with transaction(con):
                    existing = find_open_draft(con, scope.id, actor.id)
                    if inp.draft_id and (existing is None or existing["id"] != inp.draft_id):
                        self.log.warning(
                            "Ignoring respostaId %s: not the open draft of %s on scope %s",
                            inp.draft_id,
                            actor.id,
                            scope.id,
                        )
                    stored = load_answers(con, existing["id"], schema) if existing is not None else []
                    merged = carry_forward_photos(stored, answers)
                    self._trace(
                        "carry forward: stored=%s new=%s merged=%s",
                        len(stored),
                        len(answers),
                        len(merged),
                    )

                    if stamp is not None:
                        missing = missing_required(
                            schema.questions(),
                            merged,
                            require_photo=self.require_photo_on_final,
                        )
                        if missing is not None:
                            raise ValidationError(
                                f'A pergunta "{missing.title}" é obrigatória e não foi respondida.',
                                question_id=missing.id,
                                question_title=missing.title,
                            )

                    submission_id = upsert_draft(con, scope, actor.id, _meta_from(inp.observations, inp.capture), at)
                    replace_answers(con, submission_id, merged, at)
                    if stamp is not None:
                        mark_finalized(
                            con,
                            submission_id,
                            protocol=stamp.protocol,
                            hash_hex=stamp.hash,
                            at=at,
                            supervisor_signature_url=sup_url,
                            manager_signature_url=mgr_url,
                        )
                        touch_scope(con, scope.id, actor.id, at)
                    row = load_submission_row(con, submission_id)
            except ChecklistError:
                raise
            except sqlite3.Error as exc:
                self.log.exception("Failed to persist checklist for scope %s", scope.id)
                raise InternalError("Não foi possível salvar o checklist.") from exc
        return row, merged

    def _event(self, actor: CurrentUser, scope: Scope, schema: TemplateSchema, row: sqlite3.Row) -> FinalizedEvent:
        return FinalizedEvent(
            submission_id=row["id"],
            protocol=row["protocol"],
            template_title=schema.title,
            unit_id=scope.unit_id,
            unit_name=scope.unit_name,
            group_id=scope.group_id,
            group_name=scope.group_name,
            supervisor_id=actor.id,
            supervisor_name=actor.name,
            supervisor_email=actor.email,
            supervisor_phone=actor.phone,
            submitted_at=row["submitted_at"],
        )

    # -------------------------
    # finalize an existing draft
    # -------------------------
    async def finalize_draft(
        self,
        actor: CurrentUser,
        submission_id: str,
        *,
        capture: Optional[CaptureMeta] = None,
        supervisor_signature: Optional[Upload] = None,
        manager_signature_data_url: Optional[str] = None,
    ) -> SaveResult:
        capture = capture or CaptureMeta()

        def _load() -> tuple[sqlite3.Row, Scope, TemplateSchema, List[Answer]]:
            with db_conn() as con:
                row = load_submission_row(con, submission_id)
                if row is None:
                    raise NotFoundError("Checklist não encontrado.")
                if row["status"] != STATUS_DRAFT:
                    raise ValidationError("Este checklist não está em rascunho")
                if row["supervisor_id"] != actor.id:
                    raise ForbiddenError("Você só pode finalizar seus próprios rascunhos.")
                scope = load_scope(con, row["scope_id"])
                schema = load_template_schema(con, row["template_id"])
                return row, scope, schema, load_answers(con, submission_id, schema)

        draft, scope, schema, answers = await asyncio.to_thread(_load)
        ensure_unit_in_scope(actor, scope.unit_id)

        missing = missing_required(schema.questions(), answers, require_photo=self.require_photo_on_final)
        if missing is not None:
            raise ValidationError(
                f'A pergunta "{missing.title}" é obrigatória. '
                "Preencha todas as perguntas obrigatórias antes de finalizar.",
                question_id=missing.id,
                question_title=missing.title,
            )

        now = self.clock()
        sup_url, mgr_url = await asyncio.gather(
            self._upload_supervisor_signature(scope.id, actor.id, supervisor_signature, now),
            self._upload_manager_signature(scope.id, manager_signature_data_url, now),
        )

        meta = {
            "lat": capture.lat if capture.lat is not None else draft["lat"],
            "lng": capture.lng if capture.lng is not None else draft["lng"],
            "accuracy": capture.accuracy if capture.accuracy is not None else draft["accuracy"],
            "address": capture.address or draft["address"],
            "ip": capture.ip or draft["ip"],
            "user_agent": capture.user_agent or draft["user_agent"],
            "device_id": capture.device_id or draft["device_id"],
        }
        stamp = generate_protocol(
            now,
            actor.id,
            draft["unit_id"],
            draft["template_id"],
            draft["scope_id"],
            meta["ip"],
            meta["device_id"],
            prefix=self.protocol_prefix,
        )
        at = iso_timestamp(now)

        def _commit() -> sqlite3.Row:
            with db_conn() as con:
                try:
                    with transaction(con):
                        mark_finalized(
                            con,
                            submission_id,
                            protocol=stamp.protocol,
                            hash_hex=stamp.hash,
                            at=at,
                            supervisor_signature_url=sup_url,
                            manager_signature_url=mgr_url,
                            meta=meta,
                        )
                        touch_scope(con, scope.id, actor.id, at)
                        return load_submission_row(con, submission_id)
                except sqlite3.IntegrityError as exc:
                    raise ValidationError("Este checklist não está em rascunho") from exc
                except sqlite3.Error as exc:
                    self.log.exception("Failed to finalize draft %s", submission_id)
                    raise InternalError("Não foi possível finalizar o checklist.") from exc

        row = await asyncio.to_thread(_commit)
        self.log.info("Draft %s finalized with protocol %s", submission_id, stamp.protocol)
        return SaveResult(
            submission=submission_to_wire(row),
            is_draft=False,
            protocol=stamp.protocol,
            event=self._event(actor, scope, schema, row),
        )

    # -------------------------
    # manager counter-signature
    # -------------------------
    async def add_manager_signature(self, actor: CurrentUser, submission_id: str, data_url: Optional[str]) -> Dict[str, Any]:
        require_capability(actor, "update")
        if not (data_url or "").strip():
            raise ValidationError("Assinatura é obrigatória")

        def _load() -> sqlite3.Row:
            with db_conn() as con:
                row = load_submission_row(con, submission_id)
            if row is None:
                raise NotFoundError("Checklist não encontrado.")
            return row

        row = await asyncio.to_thread(_load)
        try:
            data = decode_data_url(data_url or "")
        except ValueError as exc:
            raise ValidationError("Assinatura inválida") from exc
        if not data:
            raise ValidationError("Assinatura é obrigatória")

        now = self.clock()
        try:
            url = await self.storage.put_bytes(
                data,
                prefix=f"checklists/assinaturas-gerente/{row['scope_id']}",
                filename=f"assinatura-gerente-{submission_id}-{int(now.timestamp() * 1000)}.png",
                content_type="image/png",
            )
        except OSError as exc:
            self.log.exception("Manager signature upload failed for %s", submission_id)
            raise InternalError("Não foi possível salvar a assinatura.") from exc

        at = iso_timestamp(now)

        def _commit() -> Dict[str, Any]:
            with db_conn() as con:
                with transaction(con):
                    set_manager_signature(con, submission_id, url, actor.id, at)
                updated = load_submission_row(con, submission_id)
                signer = load_user(con, actor.id)
            wire = submission_to_wire(updated)
            wire["gerenteAssinadoPor"] = {
                "id": actor.id,
                "name": signer["name"] if signer else actor.name,
                "email": signer["email"] if signer else actor.email,
            }
            return wire

        wire = await asyncio.to_thread(_commit)
        self.log.info("Manager %s signed checklist %s", actor.id, submission_id)
        return wire
