from __future__ import annotations

import io
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence, assert_never

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from .answers import Answer, BooleanAnswer, ChoiceAnswer, NumberAnswer, PhotoAnswer, TextAnswer
from .db import SubmissionReport, db_conn, load_branding_row
from .schema import Question, QuestionGroup

logger = logging.getLogger("checklists.report")

PAGE_W, PAGE_H = A4
MARGIN = 50
CONTENT_W = PAGE_W - 2 * MARGIN
FOOTER_H = 40
BOTTOM = MARGIN + FOOTER_H

GAUGE_H = 8
PHOTO_CELL_H = 120
PHOTO_GAP = 15
PHOTO_INDENT = 15
PHOTO_COL_W = (CONTENT_W - 30 - 10) / 2
SIGNATURE_H = 60

GRAY = colors.Color(0.4, 0.4, 0.4)
LIGHT_GRAY = colors.Color(0.85, 0.85, 0.85)
FOOTER_GRAY = colors.Color(0.95, 0.95, 0.95)
GREEN = colors.Color(0.13, 0.59, 0.13)
RED = colors.Color(0.96, 0.26, 0.21)


# -------------------------
# branding
# -------------------------
@dataclass(frozen=True)
class Branding:
    primary_color: str = "#009ee2"
    secondary_color: str = "#e8f5ff"
    accent_color: str = "#0088c7"
    company_name: str = "KL Facilities"
    logo_url: Optional[str] = None


DEFAULT_BRANDING = Branding()


def load_branding() -> Branding:
    try:
        with db_conn() as con:
            row = load_branding_row(con)
    except sqlite3.Error as exc:
        logger.warning("Branding settings unavailable, using defaults: %s", exc)
        return DEFAULT_BRANDING
    if not row:
        return DEFAULT_BRANDING
    return Branding(
        primary_color=row["primary_color"] or DEFAULT_BRANDING.primary_color,
        secondary_color=row["secondary_color"] or DEFAULT_BRANDING.secondary_color,
        accent_color=row["accent_color"] or DEFAULT_BRANDING.accent_color,
        company_name=row["company_name"] or DEFAULT_BRANDING.company_name,
        logo_url=row["logo_url"] or None,
    )


def _hex(value: str, default: str) -> colors.Color:
    try:
        return colors.HexColor(value)
    except (ValueError, TypeError):
        return colors.HexColor(default)


# -------------------------
# scoring
# -------------------------
@dataclass(frozen=True)
class ScoreBand:
    label: str
    color: tuple[float, float, float]


BANDS: tuple[tuple[float, ScoreBand], ...] = (
    (4.5, ScoreBand("Great", (0.27, 0.76, 0.31))),
    (3.5, ScoreBand("Good", (0.13, 0.59, 0.13))),
    (2.5, ScoreBand("Fair", (1.0, 0.84, 0.0))),
    (1.5, ScoreBand("Poor", (1.0, 0.65, 0.0))),
)
BAD = ScoreBand("Bad", (0.96, 0.26, 0.21))


def score_band(score: float) -> ScoreBand:
    for floor, band in BANDS:
        if score >= floor:
            return band
    return BAD


def aggregate_score(answers: Iterable[Answer]) -> Optional[float]:
    """Arithmetic mean of the non-null scores, None when nothing was scored."""
    scores = [a.score for a in answers if a.score is not None]
    if not scores:
        return None
    return sum(scores) / len(scores)


def gauge_percent(mean: float) -> float:
    return max(0.0, min(100.0, mean / 5 * 100))


def wrap_text(text: str, font: str, size: float, width: float) -> list[str]:
    """Greedy word wrap; a word wider than `width` stands alone on its line."""
    lines: list[str] = []
    for paragraph in str(text or "").split("\n"):
        words = paragraph.split()
        if not words:
            lines.append("")
            continue
        current = words[0]
        for word in words[1:]:
            candidate = f"{current} {word}"
            if pdfmetrics.stringWidth(candidate, font, size) <= width:
                current = candidate
            else:
                lines.append(current)
                current = word
        lines.append(current)
    return lines


def _format_date(iso: Optional[str], fmt: str = "%d/%m/%Y") -> str:
    if not iso:
        return "-"
    try:
        return datetime.fromisoformat(iso.replace("Z", "+00:00")).strftime(fmt)
    except ValueError:
        return iso[:10]


def _format_timestamp(iso: Optional[str]) -> str:
    return _format_date(iso, "%d/%m/%Y %H:%M")


def _format_number(value: float) -> str:
    return f"{value:g}"


# -------------------------
# fonts
# -------------------------
def register_fonts(regular_path: str = "", bold_path: str = "") -> tuple[str, str]:
    regular, bold = "Helvetica", "Helvetica-Bold"
    if regular_path:
        try:
            pdfmetrics.registerFont(TTFont("ChecklistSans", regular_path))
            regular = "ChecklistSans"
        except Exception as exc:
            logger.warning("PDF font %s unavailable, using Helvetica: %s", regular_path, exc)
    if bold_path:
        try:
            pdfmetrics.registerFont(TTFont("ChecklistSans-Bold", bold_path))
            bold = "ChecklistSans-Bold"
        except Exception as exc:
            logger.warning("PDF bold font %s unavailable, using Helvetica-Bold: %s", bold_path, exc)
    return regular, bold


# -------------------------
# footer pass
# -------------------------
class FooterCanvas(canvas.Canvas):
    """
    Holds every page back until save(), then stamps the footer band on each
    one. The page count is only known at that point.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._saved_page_states: list[dict] = []
        self.footer_text = ""
        self.footer_font = "Helvetica"
        self.stamped_pages: list[int] = []

    def showPage(self) -> None:
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self) -> None:
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self._draw_footer()
            canvas.Canvas.showPage(self)
        canvas.Canvas.save(self)

    def _draw_footer(self) -> None:
        page = self.getPageNumber()
        self.saveState()
        self.setFillColor(FOOTER_GRAY)
        self.rect(0, MARGIN - 10, PAGE_W, FOOTER_H, stroke=0, fill=1)
        self.setFillColor(GRAY)
        self.setFont(self.footer_font, 8)
        self.drawString(MARGIN, MARGIN + 5, self.footer_text)
        self.drawRightString(PAGE_W - MARGIN, MARGIN + 5, f"Page {page}")
        self.restoreState()
        self.stamped_pages.append(page)


# -------------------------
# renderer
# -------------------------
class ReportRenderer:
    def __init__(
        self,
        fetch_image: Callable[[str], Optional[bytes]],
        *,
        branding: Optional[Branding] = None,
        font_path: str = "",
        bold_font_path: str = "",
        page_compression: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.fetch_image = fetch_image
        self.branding = branding or DEFAULT_BRANDING
        self.font, self.bold = register_fonts(font_path, bold_font_path)
        self.page_compression = page_compression
        self.clock = clock or (lambda: datetime.now().astimezone())
        self.stamped_pages: list[int] = []
        self.primary = _hex(self.branding.primary_color, DEFAULT_BRANDING.primary_color)
        self.secondary = _hex(self.branding.secondary_color, DEFAULT_BRANDING.secondary_color)
        self.accent = _hex(self.branding.accent_color, DEFAULT_BRANDING.accent_color)
        self.c: Optional[FooterCanvas] = None
        self.y = PAGE_H - MARGIN

    def render(self, report: SubmissionReport) -> bytes:
        buf = io.BytesIO()
        self.c = FooterCanvas(buf, pagesize=A4, pageCompression=self.page_compression)
        self.c.setTitle(f"{report.template.title} - {report.unit_name}")
        self.c.footer_text = f"{self.branding.company_name} - Generated at {self.clock().strftime('%d/%m/%Y %H:%M:%S')}"
        self.c.footer_font = self.font
        self.y = PAGE_H - MARGIN

        self._header(report)
        for group in report.template.groups:
            self._group(group, report)
        self._general_observations(report)
        self._signatures(report)

        self.c.showPage()
        self.c.save()
        self.stamped_pages = list(self.c.stamped_pages)
        logger.info("Rendered checklist %s: %s pages", report.id, len(self.stamped_pages))
        return buf.getvalue()

    # --- layout primitives ---
    def _new_page(self) -> None:
        self.c.showPage()
        self.y = PAGE_H - MARGIN

    def _ensure(self, height: float) -> None:
        if self.y - height < BOTTOM:
            self._new_page()

    def _text(self, x: float, text: str, *, font: Optional[str] = None, size: float = 9,
              color: colors.Color = colors.black, step: Optional[float] = None) -> None:
        step = step if step is not None else size + 3
        self._ensure(step)
        self.c.setFont(font or self.font, size)
        self.c.setFillColor(color)
        self.c.drawString(x, self.y - size, text)
        self.y -= step

    def _image(self, url: Optional[str]) -> Optional[ImageReader]:
        if not url:
            return None
        try:
            data = self.fetch_image(url)
        except Exception as exc:
            logger.warning("Image fetch failed for %s: %s", url[:100], exc)
            return None
        if not data:
            return None
        try:
            reader = ImageReader(io.BytesIO(data))
            reader.getSize()
        except Exception as exc:
            logger.warning("Unreadable image %s: %s", url[:100], exc)
            return None
        return reader

    def _fit(self, reader: ImageReader, max_w: float, max_h: float) -> tuple[float, float]:
        iw, ih = reader.getSize()
        if not iw or not ih:
            return max_w, max_h
        scale = min(max_w / iw, max_h / ih)
        return iw * scale, ih * scale

    # --- header ---
    def _header(self, report: SubmissionReport) -> None:
        c = self.c
        title_x = MARGIN
        logo = self._image(self.branding.logo_url)
        if logo is not None:
            w, h = self._fit(logo, 120, 50)
            c.drawImage(logo, MARGIN, self.y - h, w, h, mask="auto")
            title_x = MARGIN + w + 15

        c.setFillColor(self.primary)
        c.setFont(self.bold, 18)
        c.drawString(title_x, self.y - 30, "Compliance Report")
        self.y -= 65

        mean = aggregate_score(report.answers.values())
        score_text = f"{mean:.1f} ({score_band(mean).label})" if mean is not None else "-"
        columns = (
            ("Unit", report.unit_name or "-"),
            ("Group", report.group_name or "-"),
            ("Score", score_text),
            ("Date", _format_timestamp(report.submitted_at or report.created_at)),
        )
        col_w = CONTENT_W / len(columns)
        c.setFillColor(self.secondary)
        c.rect(MARGIN, self.y - 34, CONTENT_W, 34, stroke=0, fill=1)
        for i, (label, value) in enumerate(columns):
            x = MARGIN + 8 + i * col_w
            c.setFillColor(GRAY)
            c.setFont(self.font, 8)
            c.drawString(x, self.y - 12, label)
            c.setFillColor(colors.black)
            c.setFont(self.bold, 10)
            value_lines = wrap_text(value, self.bold, 10, col_w - 12)
            c.drawString(x, self.y - 26, value_lines[0] if value_lines else "-")
        self.y -= 48

        if mean is not None:
            self._gauge(mean)

        self._text(MARGIN, report.template.title, font=self.bold, size=14, step=20)
        if report.template.description:
            for line in wrap_text(report.template.description, self.font, 9, CONTENT_W):
                self._text(MARGIN, line, size=9, color=GRAY)
        self.y -= 4
        supervisor = report.supervisor.name or "-"
        if report.supervisor.email:
            supervisor = f"{supervisor} ({report.supervisor.email})"
        self._text(MARGIN, f"Supervisor: {supervisor}", size=9)
        if report.protocol:
            self._text(MARGIN, f"Protocol: {report.protocol}", font=self.bold, size=9)

        self.y -= 6
        c.setStrokeColor(LIGHT_GRAY)
        c.line(MARGIN, self.y, MARGIN + CONTENT_W, self.y)
        self.y -= 14

    def _gauge(self, mean: float) -> None:
        c = self.c
        segment_w = CONTENT_W / 5
        bands = [BAD] + [band for _, band in reversed(BANDS)]
        for i, band in enumerate(bands):
            c.setFillColorRGB(*band.color)
            c.rect(MARGIN + i * segment_w, self.y - GAUGE_H, segment_w, GAUGE_H, stroke=0, fill=1)

        pct = gauge_percent(mean)
        x = MARGIN + CONTENT_W * pct / 100
        c.setStrokeColor(colors.black)
        c.setLineWidth(2)
        c.line(x, self.y + 4, x, self.y - GAUGE_H - 4)
        c.setLineWidth(1)
        c.setFillColor(colors.black)
        c.circle(x, self.y + 6, 3, stroke=0, fill=1)
        c.setFont(self.bold, 8)
        c.drawCentredString(min(max(x, MARGIN + 20), MARGIN + CONTENT_W - 20), self.y - GAUGE_H - 14, f"{pct:.2f}%")
        self.y -= GAUGE_H + 30

    # --- body ---
    def _group(self, group: QuestionGroup, report: SubmissionReport) -> None:
        self._ensure(60)
        c = self.c
        c.setFillColor(self.secondary)
        c.rect(MARGIN, self.y - 20, CONTENT_W, 20, stroke=0, fill=1)
        c.setFillColor(self.accent)
        c.setFont(self.bold, 13)
        c.drawString(MARGIN + 6, self.y - 15, group.title)
        self.y -= 28
        if group.description:
            for line in wrap_text(group.description, self.font, 8, CONTENT_W):
                self._text(MARGIN, line, size=8, color=GRAY)
        for question in group.questions:
            self._question(question, report.answers.get(question.id))
        self.y -= 6

    def _answer_label(self, answer: Optional[Answer]) -> Optional[tuple[str, colors.Color]]:
        match answer:
            case None:
                return "Not answered", GRAY
            case BooleanAnswer(value=True):
                return "[OK] Compliant", GREEN
            case BooleanAnswer(value=False):
                return "[X] Non-compliant", RED
            case BooleanAnswer():
                return "Not answered", GRAY
            case TextAnswer(text=text):
                return (text, colors.black) if text else ("Not provided", GRAY)
            case NumberAnswer(value=value):
                return (_format_number(value), colors.black) if value is not None else ("Not provided", GRAY)
            case ChoiceAnswer(option=option):
                return (option, colors.black) if option else ("Not provided", GRAY)
            case PhotoAnswer(photos=photos):
                return None if photos else ("Photo not attached", GRAY)
            case _ as unreachable:
                assert_never(unreachable)

    def _question(self, question: Question, answer: Optional[Answer]) -> None:
        text_w = CONTENT_W - 80
        title_lines = wrap_text(f"{question.position}. {question.title}", self.bold, 9, text_w)
        desc_lines = wrap_text(question.description, self.font, 8, text_w) if question.description else []
        label = self._answer_label(answer)
        answer_lines = wrap_text(label[0], self.font, 9, text_w - 10) if label else []
        obs_lines: list[str] = []
        if answer is not None and answer.observation:
            for raw in answer.observation.split("\n"):
                obs_lines.extend(wrap_text(raw, self.font, 8, text_w - 10))

        block = 12 * len(title_lines) + 10 * len(desc_lines) + 12 * len(answer_lines) + 8
        if obs_lines:
            block += 12 + 10 * len(obs_lines)
        self._ensure(min(block, PAGE_H - MARGIN - BOTTOM))

        if answer is not None and answer.score is not None:
            band = score_band(answer.score)
            dot_x = MARGIN + CONTENT_W - 30
            self.c.setFillColorRGB(*band.color)
            self.c.circle(dot_x, self.y - 5, 4, stroke=0, fill=1)
            self.c.setFillColor(colors.black)
            self.c.setFont(self.bold, 8)
            self.c.drawString(dot_x + 8, self.y - 8, str(answer.score))

        for line in title_lines:
            self._text(MARGIN, line, font=self.bold, size=9)
        for line in desc_lines:
            self._text(MARGIN, line, size=8, color=GRAY, step=10)
        if label:
            for line in answer_lines:
                self._text(MARGIN + 10, line, size=9, color=label[1])
        if obs_lines:
            self._text(MARGIN + 10, "Observation:", font=self.bold, size=8)
            for line in obs_lines:
                self._text(MARGIN + 10, line, size=8, color=GRAY, step=10)
        self.y -= 8

        if answer is not None and answer.photos:
            self._photo_grid(question, answer.photos)

    def _photo_grid(self, question: Question, photos: Sequence[str]) -> None:
        count = len(photos)
        noun = "photo" if count == 1 else "photos"
        self._ensure(14 + PHOTO_CELL_H + PHOTO_GAP)
        self._text(MARGIN + PHOTO_INDENT, f"{question.position}. {question.title} ({count} {noun})",
                   size=8, color=GRAY)
        c = self.c
        for start in range(0, count, 2):
            self._ensure(PHOTO_CELL_H + PHOTO_GAP)
            for col, url in enumerate(photos[start:start + 2]):
                index = start + col + 1
                x = MARGIN + PHOTO_INDENT + col * (PHOTO_COL_W + 10)
                reader = self._image(url)
                if reader is not None:
                    w, h = self._fit(reader, PHOTO_COL_W, PHOTO_CELL_H)
                    c.drawImage(
                        reader,
                        x + (PHOTO_COL_W - w) / 2,
                        self.y - PHOTO_CELL_H + (PHOTO_CELL_H - h) / 2,
                        w,
                        h,
                        mask="auto",
                    )
                else:
                    c.setStrokeColor(LIGHT_GRAY)
                    c.rect(x, self.y - PHOTO_CELL_H, PHOTO_COL_W, PHOTO_CELL_H, stroke=1, fill=0)
                    c.setFillColor(GRAY)
                    c.setFont(self.font, 8)
                    c.drawCentredString(x + PHOTO_COL_W / 2, self.y - PHOTO_CELL_H / 2, f"Unable to load photo {index}")
                if count > 1:
                    c.setFillColor(self.primary)
                    c.circle(x + 10, self.y - 10, 8, stroke=0, fill=1)
                    c.setFillColor(colors.white)
                    c.setFont(self.bold, 8)
                    c.drawCentredString(x + 10, self.y - 13, str(index))
            self.y -= PHOTO_CELL_H + PHOTO_GAP

    # --- closing ---
    def _general_observations(self, report: SubmissionReport) -> None:
        text = (report.observations or "").strip()
        if not text:
            return
        self._ensure(40)
        self._text(MARGIN, "General Observations", font=self.bold, size=12, color=self.accent, step=18)
        for line in wrap_text(text, self.font, 9, CONTENT_W):
            self._text(MARGIN, line, size=9)
        self.y -= 10

    def _signature_block(self, label: str, url: Optional[str], missing_text: str, name: str) -> None:
        c = self.c
        self._ensure(SIGNATURE_H + 60)
        self._text(MARGIN, label, font=self.bold, size=10, step=14)
        reader = self._image(url)
        if reader is not None:
            w, h = self._fit(reader, CONTENT_W - 10, SIGNATURE_H)
            c.drawImage(reader, MARGIN, self.y - h, w, h, mask="auto")
        else:
            c.setFillColor(GRAY)
            c.setFont(self.font, 9)
            c.drawString(MARGIN, self.y - SIGNATURE_H / 2, missing_text)
        c.setStrokeColor(colors.black)
        c.line(MARGIN, self.y - SIGNATURE_H - 5, MARGIN + CONTENT_W, self.y - SIGNATURE_H - 5)
        c.setFillColor(colors.black)
        c.setFont(self.font, 9)
        c.drawString(MARGIN, self.y - SIGNATURE_H - 20, name)
        self.y -= SIGNATURE_H + 40

    def _signatures(self, report: SubmissionReport) -> None:
        self._ensure(SIGNATURE_H + 90)
        self._text(MARGIN, "Signatures", font=self.bold, size=12, color=self.accent, step=20)
        self._signature_block(
            "Supervisor",
            report.supervisor_signature_url,
            "Signature not available",
            report.supervisor.name or "-",
        )
        manager_name = report.manager.name if report.manager else ""
        if report.manager_signed_at:
            manager_name = f"{manager_name} - {_format_date(report.manager_signed_at)}".strip(" -")
        self._signature_block(
            "Manager",
            report.manager_signature_url,
            "Manager signature pending",
            manager_name or "-",
        )
