# checklists/routers/reports.py
import logging
import re
import unicodedata
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response

from ..auth import CurrentUser, ensure_unit_in_scope, require
from ..db import db_conn, load_submission_report, load_unit_name
from ..errors import InternalError, NotFoundError, ValidationError
from ..export import ALL_UNITS, build_workbook, compute_monthly_metrics
from ..report import load_branding
from ..services import build_renderer

logger = logging.getLogger("checklists.api")

router = APIRouter(prefix="/api/checklists-operacionais", tags=["checklists-reports"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def slugify(value: str) -> str:
    text = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return text or "unidade"


def _attachment(filename: str) -> dict:
    return {
        "Content-Disposition": f'attachment; filename="{filename}"',
        "Cache-Control": "no-store",
    }


@router.get("/relatorios/mensal/excel")
async def monthly_excel(
    templateId: Optional[str] = None,
    mes: Optional[str] = None,
    grupoId: Optional[str] = None,
    unidadeId: Optional[str] = None,
    user: CurrentUser = Depends(require("list")),
):
    if not templateId or not mes:
        raise ValidationError("templateId e mes são obrigatórios")

    unit_ids = None
    if unidadeId:
        ensure_unit_in_scope(user, unidadeId)
        unit_ids = [unidadeId]
    elif user.restricted:
        unit_ids = list(user.unit_ids)

    def _build() -> tuple[bytes, str]:
        with db_conn() as con:
            label = (load_unit_name(con, unidadeId) or unidadeId) if unidadeId else ALL_UNITS
            metrics = compute_monthly_metrics(
                con,
                templateId,
                mes,
                unit_ids=unit_ids,
                group_id=grupoId,
                unit_label=label,
            )
        return build_workbook(metrics), label

    content, label = await run_in_threadpool(_build)
    filename = f"relatorio-mensal-{mes}-{slugify(label)}.xlsx"
    return Response(content=content, media_type=XLSX_MEDIA_TYPE, headers=_attachment(filename))


@router.get("/{resposta_id}/pdf")
async def submission_pdf(
    resposta_id: str,
    user: CurrentUser = Depends(require("export")),
):
    def _load():
        with db_conn() as con:
            return load_submission_report(con, resposta_id)

    report = await run_in_threadpool(_load)
    if report is None:
        raise NotFoundError("Checklist não encontrado.")

    branding = await run_in_threadpool(load_branding)
    renderer = build_renderer(branding)
    try:
        pdf = await run_in_threadpool(renderer.render, report)
    except Exception as exc:
        logger.exception("PDF assembly failed for checklist %s", resposta_id)
        raise InternalError("Não foi possível gerar o PDF.") from exc

    day = (report.submitted_at or report.created_at or "")[:10] or "sem-data"
    filename = f"checklist-{slugify(report.unit_name)}-{day}.pdf"
    logger.info("PDF for checklist %s requested by %s (%s bytes)", resposta_id, user.id, len(pdf))
    return Response(content=pdf, media_type="application/pdf", headers=_attachment(filename))
