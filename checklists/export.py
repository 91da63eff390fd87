from __future__ import annotations

import io
import re
import sqlite3
from dataclasses import dataclass, field
from typing import List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

from .db import list_finalized_submissions, load_answers
from .errors import ValidationError
from .schema import TemplateSchema, load_template_schema

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")
MONTH_NAMES = (
    "janeiro", "fevereiro", "março", "abril", "maio", "junho",
    "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
)
NON_CONFORMITY_BELOW = 3
MAX_SCORE = 5
ALL_UNITS = "Todas as Unidades"
LEGEND = (
    "AP: Aproveitamento | PP: Pontos Possíveis | PR: Pontos Realizados | "
    "NA: Não Aplicáveis | NC: Não Conformidades | NR: Não Respondidas"
)


@dataclass
class GroupMetrics:
    title: str
    possible: float = 0.0
    achieved: float = 0.0
    not_applicable: int = 0
    non_conformities: int = 0
    not_answered: int = 0

    @property
    def utilisation(self) -> Optional[float]:
        if self.possible <= 0:
            return None
        return self.achieved / self.possible * 100


@dataclass
class QuestionDetail:
    group_title: str
    question_title: str
    weight: Optional[float]
    mean: Optional[float]
    count: int
    distribution: List[int] = field(default_factory=lambda: [0] * MAX_SCORE)


@dataclass
class MonthlyMetrics:
    template: TemplateSchema
    month: str
    unit_label: str
    submissions: int
    groups: List[GroupMetrics]
    total: GroupMetrics
    details: List[QuestionDetail]

    @property
    def title_line(self) -> str:
        year, month = self.month.split("-")
        return f"RELATÓRIO MENSAL - {MONTH_NAMES[int(month) - 1]} de {year}".upper()


def month_range(month: str) -> tuple[str, str]:
    """`YYYY-MM` -> [first day, first day of next month) as ISO UTC strings."""
    m = _MONTH_RE.match((month or "").strip())
    if not m or not 1 <= int(m.group(2)) <= 12:
        raise ValidationError("mes deve estar no formato YYYY-MM")
    year, mon = int(m.group(1)), int(m.group(2))
    next_year, next_mon = (year + 1, 1) if mon == 12 else (year, mon + 1)
    return f"{year:04d}-{mon:02d}-01T00:00:00.000Z", f"{next_year:04d}-{next_mon:02d}-01T00:00:00.000Z"


def compute_monthly_metrics(
    con: sqlite3.Connection,
    template_id: str,
    month: str,
    *,
    unit_ids: Optional[List[str]] = None,
    group_id: Optional[str] = None,
    unit_label: str = ALL_UNITS,
) -> MonthlyMetrics:
    start, end = month_range(month)
    schema = load_template_schema(con, template_id)
    rows = list_finalized_submissions(con, template_id, start, end, unit_ids=unit_ids, group_id=group_id)
    answer_sets = [{a.question_id: a for a in load_answers(con, r["id"], schema)} for r in rows]

    groups: List[GroupMetrics] = []
    details: List[QuestionDetail] = []
    for group in schema.groups:
        gm = GroupMetrics(title=group.title)
        for question in group.questions:
            weight = question.weight or 0
            detail = QuestionDetail(group.title, question.title, question.weight, None, 0)
            total = 0
            for answers in answer_sets:
                answer = answers.get(question.id)
                if answer is None or answer.score is None:
                    gm.not_answered += 1
                    continue
                score = answer.score
                if weight:
                    gm.possible += weight * MAX_SCORE
                    gm.achieved += score * weight
                if score < NON_CONFORMITY_BELOW:
                    gm.non_conformities += 1
                total += score
                detail.count += 1
                detail.distribution[score - 1] += 1
            if detail.count:
                detail.mean = total / detail.count
            details.append(detail)
        groups.append(gm)

    overall = GroupMetrics(
        title="GERAL",
        possible=sum(g.possible for g in groups),
        achieved=sum(g.achieved for g in groups),
        not_applicable=sum(g.not_applicable for g in groups),
        non_conformities=sum(g.non_conformities for g in groups),
        not_answered=sum(g.not_answered for g in groups),
    )
    return MonthlyMetrics(
        template=schema,
        month=month,
        unit_label=unit_label,
        submissions=len(rows),
        groups=groups,
        total=overall,
        details=details,
    )


# -------------------------
# workbook
# -------------------------
_THIN = Side(style="thin")
_BORDER = Border(top=_THIN, left=_THIN, bottom=_THIN, right=_THIN)
_HEADER_FONT = Font(bold=True, size=11, color="FFFFFFFF")
_HEADER_FILL = PatternFill(fill_type="solid", fgColor="FF0066CC")
_CENTER = Alignment(horizontal="center", vertical="center")


def _style_header(ws, row: int) -> None:
    for cell in ws[row]:
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.alignment = _CENTER
        cell.border = _BORDER


def _title(ws, row: int, span: str, text: str, *, size: int, bold: bool = False) -> None:
    ws.merge_cells(f"A{row}:{span}{row}")
    cell = ws[f"A{row}"]
    cell.value = text
    cell.font = Font(bold=bold, size=size)
    cell.alignment = Alignment(horizontal="center")


def _metric_row(gm: GroupMetrics) -> list:
    if gm.possible > 0:
        return [
            gm.title,
            f"{gm.utilisation:.2f}%",
            f"{gm.possible:.2f}",
            f"{gm.achieved:.2f}",
            gm.not_applicable,
            gm.non_conformities,
            gm.not_answered,
        ]
    return [gm.title, "-", "-", "-", gm.not_applicable, gm.non_conformities, gm.not_answered]


def build_workbook(metrics: MonthlyMetrics) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Métricas"

    _title(ws, 1, "G", metrics.template.title.upper(), size=14, bold=True)
    _title(ws, 2, "G", metrics.title_line, size=12)
    _title(ws, 3, "G", f"Unidade: {metrics.unit_label}", size=10)

    header_row = 5
    for col, label in enumerate(["GRUPO", "AP", "PP", "PR", "NA", "NC", "NR"], start=1):
        ws.cell(row=header_row, column=col, value=label)
    _style_header(ws, header_row)

    row = header_row + 1
    for gm in metrics.groups:
        for col, value in enumerate(_metric_row(gm), start=1):
            ws.cell(row=row, column=col, value=value).border = _BORDER
        row += 1
    for col, value in enumerate(_metric_row(metrics.total), start=1):
        cell = ws.cell(row=row, column=col, value=value)
        cell.border = _BORDER
        cell.font = Font(bold=True)

    row += 2
    ws.merge_cells(f"A{row}:G{row}")
    ws[f"A{row}"].value = LEGEND
    ws[f"A{row}"].font = Font(size=9, italic=True)

    for letter, width in zip("ABCDEFG", (40, 12, 12, 12, 10, 10, 10)):
        ws.column_dimensions[letter].width = width

    ds = wb.create_sheet(title="Detalhamento")
    _title(ds, 1, "F", metrics.template.title.upper(), size=14, bold=True)
    _title(ds, 2, "F", metrics.title_line, size=12)

    header_row = 4
    labels = ["Grupo", "Pergunta", "Peso", "Nota Média", "Total Respostas", "Distribuição (1-5)"]
    for col, label in enumerate(labels, start=1):
        ds.cell(row=header_row, column=col, value=label)
    _style_header(ds, header_row)

    row = header_row + 1
    for d in metrics.details:
        values = [
            d.group_title,
            d.question_title,
            d.weight if d.weight else "-",
            f"{d.mean:.2f}" if d.mean is not None else "-",
            d.count,
            "/".join(str(n) for n in d.distribution),
        ]
        for col, value in enumerate(values, start=1):
            ds.cell(row=row, column=col, value=value).border = _BORDER
        row += 1

    for letter, width in zip("ABCDEF", (25, 50, 10, 15, 15, 25)):
        ds.column_dimensions[letter].width = width

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
