# checklists/routers/responses.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PayloadError
from starlette.datastructures import FormData, UploadFile

from ..auth import CurrentUser, get_current_user, require
from ..errors import ValidationError
from ..notify import dispatch_finalized
from ..protocol import client_ip
from ..reconciler import CaptureMeta, SubmissionInput, SubmissionReconciler
from ..schemas import AnswerPayloadList, ManagerSignatureIn
from ..services import get_reconciler
from ..storage import Upload

router = APIRouter(prefix="/api/checklists-operacionais", tags=["checklists"])


# -------------------------
# form helpers
# -------------------------
def _text(form: FormData, name: str) -> Optional[str]:
    value = form.get(name)
    if value is None or isinstance(value, UploadFile):
        return None
    value = str(value).strip()
    return value or None


def _float(form: FormData, name: str) -> Optional[float]:
    raw = _text(form, name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


async def _upload(value: Any) -> Optional[Upload]:
    if not isinstance(value, UploadFile):
        return None
    data = await value.read()
    if not data:
        return None
    return Upload(data=data, filename=value.filename or "", content_type=value.content_type or "")


def _capture(form: FormData, request: Request) -> CaptureMeta:
    return CaptureMeta(
        lat=_float(form, "lat"),
        lng=_float(form, "lng"),
        accuracy=_float(form, "accuracy"),
        address=_text(form, "endereco"),
        device_id=_text(form, "deviceId"),
        user_agent=request.headers.get("user-agent"),
        ip=client_ip(request.headers) or None,
    )


async def _submission_input(form: FormData, request: Request) -> SubmissionInput:
    scope_id = _text(form, "escopoId")
    if not scope_id:
        raise ValidationError("escopoId é obrigatório")

    raw_answers = _text(form, "answers")
    if not raw_answers:
        raise ValidationError("answers é obrigatório")
    try:
        answers = AnswerPayloadList.validate_json(raw_answers)
    except PayloadError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        raise ValidationError(f"answers inválido: {first.get('msg', 'formato incorreto')}") from exc

    files: Dict[str, Upload] = {}
    justifications: Dict[str, str] = {}
    for key, value in form.multi_items():
        if key.startswith("foto_"):
            upload = await _upload(value)
            if upload is not None:
                files[key] = upload
        elif key.startswith("observacao_") and not isinstance(value, UploadFile):
            justifications[key[len("observacao_"):]] = str(value)

    return SubmissionInput(
        scope_id=scope_id,
        answers=answers,
        is_draft=(_text(form, "isDraft") or "").lower() == "true",
        observations=_text(form, "observacoes"),
        draft_id=_text(form, "respostaId"),
        capture=_capture(form, request),
        files=files,
        justifications=justifications,
        supervisor_signature=await _upload(form.get("assinaturaFoto")),
        manager_signature_data_url=_text(form, "assinaturaGerenteDataUrl"),
    )


# -------------------------
# API
# -------------------------
@router.get("/respostas")
async def get_draft(
    escopoId: Optional[str] = None,
    user: CurrentUser = Depends(require("create")),
    reconciler: SubmissionReconciler = Depends(get_reconciler),
):
    scope_id = (escopoId or "").strip()
    if not scope_id:
        raise ValidationError("escopoId é obrigatório")
    return {"rascunho": await reconciler.get_draft(scope_id, user)}


@router.post("/respostas")
async def save_submission(
    request: Request,
    background: BackgroundTasks,
    user: CurrentUser = Depends(require("create")),
    reconciler: SubmissionReconciler = Depends(get_reconciler),
):
    """
    Draft save or final submission, multipart:
    escopoId, answers (JSON), isDraft, respostaId?, observacoes?, lat/lng/accuracy,
    endereco, deviceId, foto_<id>, foto_<id>_<i>, foto_anexada_<id>_<i>,
    observacao_<id>, assinaturaFoto, assinaturaGerenteDataUrl
    """
    form = await request.form()
    inp = await _submission_input(form, request)
    result = await reconciler.save_submission(user, inp)
    if result.event is not None:
        background.add_task(dispatch_finalized, result.event)
    return JSONResponse(result.to_wire(), status_code=201)


@router.post("/respostas/{resposta_id}/finalizar")
async def finalize_draft(
    resposta_id: str,
    request: Request,
    background: BackgroundTasks,
    user: CurrentUser = Depends(require("create")),
    reconciler: SubmissionReconciler = Depends(get_reconciler),
):
    form = await request.form()
    result = await reconciler.finalize_draft(
        user,
        resposta_id,
        capture=_capture(form, request),
        supervisor_signature=await _upload(form.get("assinaturaFoto")),
        manager_signature_data_url=_text(form, "assinaturaGerenteDataUrl"),
    )
    if result.event is not None:
        background.add_task(dispatch_finalized, result.event)
    return {"resposta": result.submission, "protocolo": result.protocol}


@router.post("/respostas/{resposta_id}/assinatura-gerente")
async def add_manager_signature(
    resposta_id: str,
    payload: ManagerSignatureIn = Body(...),
    user: CurrentUser = Depends(get_current_user),
    reconciler: SubmissionReconciler = Depends(get_reconciler),
):
    resposta = await reconciler.add_manager_signature(user, resposta_id, payload.assinatura_data_url)
    return {"resposta": resposta}
