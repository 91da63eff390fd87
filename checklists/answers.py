from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping, Optional, Sequence, Union, assert_never

from .errors import ValidationError
from .schema import Question, QuestionType
from .schemas import AnswerPayload

_REASON_LABEL = "Motivo: "
_RESOLUTION_LABEL = "O que foi feito para resolver: "


@dataclass
class _AnswerBase:
    question_id: str
    score: Optional[int] = None
    photos: list[str] = field(default_factory=list)
    # True when `photos` only holds fresh uploads to be added to what is stored.
    extends_stored_photos: bool = False
    observation: Optional[str] = None


@dataclass
class TextAnswer(_AnswerBase):
    text: Optional[str] = None


@dataclass
class BooleanAnswer(_AnswerBase):
    value: Optional[bool] = None


@dataclass
class NumberAnswer(_AnswerBase):
    value: Optional[float] = None


@dataclass
class ChoiceAnswer(_AnswerBase):
    option: Optional[str] = None


@dataclass
class PhotoAnswer(_AnswerBase):
    multiple: bool = False


Answer = Union[TextAnswer, BooleanAnswer, NumberAnswer, ChoiceAnswer, PhotoAnswer]


# -------------------------
# value coercion
# -------------------------
def _coerce_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() == "true"


def _coerce_number(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(str(raw).strip()) if isinstance(raw, str) else float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def _clean_text(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw).strip()


def format_justification(raw: Optional[str]) -> Optional[str]:
    """Non-conformance justification: `{motivo, resolucao}` JSON or plain text."""
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    try:
        details = json.loads(text)
    except ValueError:
        return text
    if not isinstance(details, dict):
        return text
    reason = _clean_text(details.get("motivo"))
    resolution = _clean_text(details.get("resolucao"))
    if not reason and not resolution:
        return text
    return f"{_REASON_LABEL}{reason}\n\n{_RESOLUTION_LABEL}{resolution}"


def parse_photo_urls(raw: Any) -> list[str]:
    """URLs echoed back by the client: a JSON list, a list or one string; http(s) only."""
    if raw is None:
        return []
    items: list[Any]
    if isinstance(raw, list):
        items = raw
    else:
        text = str(raw).strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = [text]
            items = parsed if isinstance(parsed, list) else [text]
        else:
            items = [text]
    out: list[str] = []
    for item in items:
        if isinstance(item, str) and item.startswith(("http://", "https://")):
            out.append(item)
    return out


def decode_photo_field(value: Optional[str]) -> list[str]:
    """Stored photo reference: one URL or a JSON-encoded list."""
    if not value:
        return []
    text = value.strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except ValueError:
            return [text]
        if isinstance(parsed, list):
            return [str(u) for u in parsed if isinstance(u, str) and u]
    return [text]


def encode_photo_urls(urls: Sequence[str], *, as_list: bool = False) -> Optional[str]:
    if not urls:
        return None
    if len(urls) == 1 and not as_list:
        return urls[0]
    return json.dumps(list(urls), ensure_ascii=False)


# -------------------------
# normalization
# -------------------------
def empty_answer(question: Question) -> Answer:
    match question.type:
        case QuestionType.TEXT:
            return TextAnswer(question.id)
        case QuestionType.BOOLEAN:
            return BooleanAnswer(question.id)
        case QuestionType.NUMBER:
            return NumberAnswer(question.id)
        case QuestionType.SINGLE_CHOICE:
            return ChoiceAnswer(question.id)
        case QuestionType.PHOTO:
            return PhotoAnswer(question.id, multiple=question.allow_multiple_photos)
        case _ as unreachable:
            assert_never(unreachable)


def _required_error(question: Question, message: str) -> ValidationError:
    return ValidationError(message, question_id=question.id, question_title=question.title)


def normalize_answer(
    question: Question,
    payload: Optional[AnswerPayload],
    *,
    is_draft: bool,
    observation: Optional[str] = None,
) -> Optional[Answer]:
    """
    Payload -> typed answer for one question, before any upload.
    Returns None when nothing should be stored for the question.
    PHOTO answers carry only the URLs echoed in the payload; uploads are
    attached later by `attach_photos`.
    """
    score = payload.nota if payload is not None else None
    enforce = question.required and not is_draft

    match question.type:
        case QuestionType.TEXT:
            text = _clean_text(payload.valor_texto if payload else None)
            if not text:
                if enforce:
                    raise _required_error(question, f'A pergunta "{question.title}" é obrigatória.')
                return None
            return TextAnswer(question.id, score=score, observation=observation, text=text)

        case QuestionType.BOOLEAN:
            raw = payload.valor_boolean if payload else None
            if raw is None:
                if enforce:
                    raise _required_error(
                        question,
                        f'Informe uma resposta (Conforme ou Não Conforme) para "{question.title}".',
                    )
                if is_draft and score is not None:
                    return BooleanAnswer(question.id, score=score, value=None)
                return None
            return BooleanAnswer(
                question.id,
                score=score,
                observation=observation,
                value=_coerce_bool(raw),
            )

        case QuestionType.NUMBER:
            value = _coerce_number(payload.valor_numero if payload else None)
            if value is None:
                if enforce:
                    raise _required_error(question, f'Informe um valor numérico para "{question.title}".')
                return None
            return NumberAnswer(question.id, score=score, observation=observation, value=value)

        case QuestionType.SINGLE_CHOICE:
            option = _clean_text(payload.valor_opcao if payload else None)
            if not option:
                if enforce:
                    raise _required_error(question, f'Selecione uma opção para "{question.title}".')
                return None
            if option not in question.options:
                raise _required_error(question, f'Opção inválida para "{question.title}".')
            return ChoiceAnswer(question.id, score=score, observation=observation, option=option)

        case QuestionType.PHOTO:
            urls = parse_photo_urls(payload.foto_url if payload else None)
            if not question.allow_multiple_photos:
                urls = urls[:1]
            return PhotoAnswer(
                question.id,
                score=score,
                observation=observation,
                photos=urls,
                multiple=question.allow_multiple_photos,
            )

        case _ as unreachable:
            assert_never(unreachable)


def attach_photos(
    question: Question,
    answer: Optional[Answer],
    uploaded: Sequence[str] = (),
    evidence: Sequence[str] = (),
) -> Optional[Answer]:
    """Merge freshly uploaded photo URLs into a normalized answer."""
    if isinstance(answer, PhotoAnswer):
        echoed = list(answer.photos)
        if uploaded:
            if answer.multiple:
                photos = echoed + list(uploaded)
                extends = not echoed
            else:
                photos = [uploaded[0]]
                extends = False
        else:
            photos = echoed
            extends = False
        if evidence:
            extends = extends or not photos
            photos = photos + list(evidence)
        if not photos:
            # no photo at all: the answer is dropped, missing_required reports it
            return None
        return replace(answer, photos=photos, extends_stored_photos=extends)

    if not evidence:
        return answer
    base = answer if answer is not None else empty_answer(question)
    return replace(base, photos=list(base.photos) + list(evidence), extends_stored_photos=True)


def has_value(answer: Optional[Answer]) -> bool:
    match answer:
        case None:
            return False
        case TextAnswer(text=text):
            return bool(text)
        case BooleanAnswer(value=value):
            return value is not None
        case NumberAnswer(value=value):
            return value is not None and math.isfinite(value)
        case ChoiceAnswer(option=option):
            return bool(option)
        case PhotoAnswer(photos=photos):
            return bool(photos)
        case _ as unreachable:
            assert_never(unreachable)


def missing_required(
    questions: Iterable[Question],
    answers: Iterable[Answer],
    *,
    require_photo: bool = True,
) -> Optional[Question]:
    """First required question, in declaration order, without a usable value."""
    by_id = {a.question_id: a for a in answers}
    for question in questions:
        if not question.required:
            continue
        if question.type is QuestionType.PHOTO and not require_photo:
            continue
        if not has_value(by_id.get(question.id)):
            return question
    return None


def carry_forward_photos(old_answers: Iterable[Answer], new_answers: Iterable[Answer]) -> list[Answer]:
    """
    Merge the stored answer set of a draft with the newly normalized one.

    - a new answer without photos keeps the stored photos;
    - a new answer flagged `extends_stored_photos` appends to the stored list;
    - otherwise the new photos replace the stored ones;
    - a stored answer holding photos whose question is absent from the new
      set survives as a photo-only answer.
    """
    stored = {a.question_id: a for a in old_answers}
    merged: list[Answer] = []
    seen: set[str] = set()
    for answer in new_answers:
        seen.add(answer.question_id)
        previous = stored.get(answer.question_id)
        old_photos = list(previous.photos) if previous is not None else []
        if not answer.photos:
            photos = old_photos
        elif answer.extends_stored_photos:
            photos = old_photos + [u for u in answer.photos if u not in old_photos]
        else:
            photos = list(answer.photos)
        merged.append(replace(answer, photos=photos, extends_stored_photos=False))

    for question_id, previous in stored.items():
        if question_id in seen or not previous.photos:
            continue
        merged.append(_photo_only(previous))
    return merged


def _photo_only(answer: Answer) -> Answer:
    match answer:
        case TextAnswer():
            return TextAnswer(answer.question_id, photos=list(answer.photos))
        case BooleanAnswer():
            return BooleanAnswer(answer.question_id, photos=list(answer.photos))
        case NumberAnswer():
            return NumberAnswer(answer.question_id, photos=list(answer.photos))
        case ChoiceAnswer():
            return ChoiceAnswer(answer.question_id, photos=list(answer.photos))
        case PhotoAnswer():
            return PhotoAnswer(answer.question_id, photos=list(answer.photos), multiple=answer.multiple)
        case _ as unreachable:
            assert_never(unreachable)


# -------------------------
# storage / wire mapping
# -------------------------
def answer_to_row(answer: Answer) -> dict[str, Any]:
    row: dict[str, Any] = {
        "question_id": answer.question_id,
        "text_value": None,
        "bool_value": None,
        "number_value": None,
        "option_value": None,
        "photo_url": None,
        "observation": answer.observation,
        "score": answer.score,
    }
    as_list = False
    match answer:
        case TextAnswer(text=text):
            row["text_value"] = text
        case BooleanAnswer(value=value):
            row["bool_value"] = None if value is None else int(bool(value))
        case NumberAnswer(value=value):
            row["number_value"] = value
        case ChoiceAnswer(option=option):
            row["option_value"] = option
        case PhotoAnswer(multiple=multiple):
            as_list = multiple
        case _ as unreachable:
            assert_never(unreachable)
    row["photo_url"] = encode_photo_urls(answer.photos, as_list=as_list)
    return row


def answer_from_row(question: Question, row: Mapping[str, Any]) -> Answer:
    common = {
        "score": row["score"],
        "photos": decode_photo_field(row["photo_url"]),
        "observation": row["observation"],
    }
    match question.type:
        case QuestionType.TEXT:
            return TextAnswer(question.id, text=row["text_value"], **common)
        case QuestionType.BOOLEAN:
            raw = row["bool_value"]
            return BooleanAnswer(question.id, value=None if raw is None else bool(raw), **common)
        case QuestionType.NUMBER:
            return NumberAnswer(question.id, value=row["number_value"], **common)
        case QuestionType.SINGLE_CHOICE:
            return ChoiceAnswer(question.id, option=row["option_value"], **common)
        case QuestionType.PHOTO:
            return PhotoAnswer(question.id, multiple=question.allow_multiple_photos, **common)
        case _ as unreachable:
            assert_never(unreachable)


def answer_to_wire(answer: Answer, question: Question) -> dict[str, Any]:
    row = answer_to_row(answer)
    bool_value = row["bool_value"]
    return {
        "perguntaId": answer.question_id,
        "valorTexto": row["text_value"],
        "valorBoolean": None if bool_value is None else bool(bool_value),
        "valorNumero": row["number_value"],
        "valorOpcao": row["option_value"],
        "fotoUrl": row["photo_url"],
        "observacao": row["observation"],
        "nota": row["score"],
        "pergunta": {"id": question.id, "tipo": question.type.value},
    }
