from __future__ import annotations

import base64
import logging
from datetime import datetime

import pytest

from checklists.answers import BooleanAnswer, ChoiceAnswer, NumberAnswer, PhotoAnswer, TextAnswer
from checklists.db import Person, SubmissionReport
from checklists.report import (
    Branding,
    ReportRenderer,
    aggregate_score,
    gauge_percent,
    score_band,
    wrap_text,
)
from checklists.schema import Question, QuestionGroup, QuestionType, TemplateSchema
from conftest import png_bytes

TEMPLATE = TemplateSchema(
    id="tpl-1",
    title="Cleaning Inspection",
    description="Daily walk through the common areas.",
    groups=(
        QuestionGroup(
            id="g-1",
            title="Common areas",
            position=1,
            questions=(
                Question("q-nome", "Inspector", QuestionType.TEXT, 1, required=True),
                Question("q-conforme", "Floor is clean", QuestionType.BOOLEAN, 2),
                Question("q-qtd", "Bins emptied", QuestionType.NUMBER, 3),
                Question("q-estado", "Condition", QuestionType.SINGLE_CHOICE, 4, options=("Good", "Bad")),
                Question("q-vazia", "Unanswered question", QuestionType.TEXT, 5),
            ),
        ),
        QuestionGroup(
            id="g-2",
            title="Records",
            position=2,
            questions=(
                Question("q-foto", "Hallway photos", QuestionType.PHOTO, 1, allow_multiple_photos=True),
                Question("q-fachada", "Front photo", QuestionType.PHOTO, 2),
            ),
        ),
    ),
)


def _data_url(color: str) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes(color)).decode("ascii")


def _fetch(url: str):
    if url.startswith("data:"):
        return base64.b64decode(url.split(",", 1)[1])
    return None


def _report(**overrides) -> SubmissionReport:
    fields = dict(
        id="sub-1",
        status="FINALIZED",
        template=TEMPLATE,
        unit_name="Downtown Unit",
        group_name="South Group",
        supervisor=Person(id="sup-1", name="Ana Lima", email="ana@example.com"),
        answers={
            "q-nome": TextAnswer("q-nome", text="Ana", score=5),
            "q-conforme": BooleanAnswer("q-conforme", value=False, score=1,
                                        observation="Reason: wet floor\n\nFix: sign placed"),
            "q-qtd": NumberAnswer("q-qtd", value=3.0, score=3),
            "q-estado": ChoiceAnswer("q-estado", option="Good"),
            "q-foto": PhotoAnswer(
                "q-foto",
                photos=[_data_url("red"), _data_url("blue"), "https://unreachable.invalid/x.jpg"],
                multiple=True,
            ),
            "q-fachada": PhotoAnswer("q-fachada"),
        },
        observations="Everything checked.",
        protocol="KL-20261019-ABCDEF12",
        submitted_at="2026-10-19T12:00:00.000Z",
        created_at="2026-10-19T11:00:00.000Z",
        supervisor_signature_url=_data_url("black"),
    )
    fields.update(overrides)
    return SubmissionReport(**fields)


def _renderer() -> ReportRenderer:
    return ReportRenderer(
        _fetch,
        branding=Branding(company_name="Acme Facilities"),
        page_compression=0,
        clock=lambda: datetime(2026, 10, 19, 15, 30, 0),
    )


def test_aggregate_score_and_band() -> None:
    answers = [TextAnswer("a", score=5), TextAnswer("b", score=3), TextAnswer("c", score=1), TextAnswer("d")]
    mean = aggregate_score(answers)
    assert mean == 3.0
    assert score_band(mean).label == "Fair"
    assert gauge_percent(mean) == 60.0
    assert aggregate_score([TextAnswer("a")]) is None


@pytest.mark.parametrize(
    "score, label",
    [(5, "Great"), (4.5, "Great"), (4.49, "Good"), (3.5, "Good"), (2.5, "Fair"), (1.5, "Poor"), (1.49, "Bad"), (0, "Bad")],
)
def test_score_band_edges(score, label) -> None:
    assert score_band(score).label == label


def test_gauge_percent_is_clamped() -> None:
    assert gauge_percent(7) == 100.0
    assert gauge_percent(-1) == 0.0


def test_wrap_text_never_breaks_words() -> None:
    lines = wrap_text("alpha beta gamma delta", "Helvetica", 10, 60)
    assert len(lines) > 1
    assert " ".join(lines) == "alpha beta gamma delta"
    assert wrap_text("supercalifragilistic", "Helvetica", 10, 5) == ["supercalifragilistic"]
    assert wrap_text("one\ntwo", "Helvetica", 10, 500) == ["one", "two"]


def test_render_produces_paginated_pdf_with_footer_on_every_page() -> None:
    long_obs = "\n".join(f"Line {i} of the general observations block." for i in range(120))
    renderer = _renderer()
    pdf = renderer.render(_report(observations=long_obs))

    assert pdf.startswith(b"%PDF")
    pages = renderer.stamped_pages
    assert len(pages) >= 2
    assert pages == list(range(1, len(pages) + 1))
    for page in pages:
        assert f"(Page {page})".encode() in pdf
    assert b"Acme Facilities - Generated at 19/10/2026 15:30:00" in pdf
    assert b"Compliance Report" in pdf
    assert b"Protocol: KL-20261019-ABCDEF12" in pdf


def test_render_answer_labels_and_photo_grid() -> None:
    renderer = _renderer()
    pdf = renderer.render(_report())

    assert b"[X] Non-compliant" in pdf
    assert b"Not answered" in pdf
    assert b"Photo not attached" in pdf
    assert b"Observation:" in pdf
    assert b"\\(3 photos\\)" in pdf
    assert b"Unable to load photo 3" in pdf
    assert b"Unable to load photo 1" not in pdf
    assert b"Manager signature pending" in pdf
    assert b"Signature not available" not in pdf
    # mean of 5, 1 and 3
    assert b"3.0 \\(Fair\\)" in pdf
    assert b"60.00%" in pdf


def test_render_without_scores_or_photos() -> None:
    long_obs = "\n".join(f"Line {i} of the general observations block." for i in range(120))
    answers = {
        "q-nome": TextAnswer("q-nome", text="Ana"),
        "q-conforme": BooleanAnswer("q-conforme", value=True),
        "q-qtd": NumberAnswer("q-qtd", value=2.0),
        "q-estado": ChoiceAnswer("q-estado", option="Bad"),
        "q-foto": PhotoAnswer("q-foto", multiple=True),
        "q-fachada": PhotoAnswer("q-fachada"),
    }
    renderer = _renderer()
    pdf = renderer.render(_report(answers=answers, supervisor_signature_url=None, observations=long_obs))

    assert pdf.startswith(b"%PDF")
    pages = renderer.stamped_pages
    assert len(pages) >= 2
    assert pages == list(range(1, len(pages) + 1))
    for page in pages:
        assert f"(Page {page})".encode() in pdf
    assert b"[OK] Compliant" in pdf
    assert b"Photo not attached" in pdf
    assert b"Signature not available" in pdf
    assert b"Manager signature pending" in pdf
    assert b"General Observations" in pdf
    assert b"Line 119 of the general observations block." in pdf

    bare = _renderer().render(_report(answers=answers, supervisor_signature_url=None, observations=None))
    assert b"General Observations" not in bare


def test_header_shows_capture_time() -> None:
    pdf = _renderer().render(_report())
    assert b"19/10/2026 12:00" in pdf


def test_branding_falls_back_when_table_is_missing(ck, caplog) -> None:
    with ck.db.db_conn() as con:
        con.execute("DROP TABLE branding_settings")
    with caplog.at_level(logging.WARNING, logger="checklists.report"):
        assert ck.report.load_branding() == ck.report.DEFAULT_BRANDING
    assert "Branding settings unavailable" in caplog.text


def test_logo_fetch_failure_does_not_abort_render() -> None:
    def broken(url: str):
        raise OSError("network down")

    renderer = ReportRenderer(broken, branding=Branding(logo_url="https://cdn.invalid/logo.png"), page_compression=0)
    pdf = renderer.render(_report())
    assert b"Compliance Report" in pdf
