from __future__ import annotations

from typing import Any, Optional


class ChecklistError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        sub_code: Optional[str] = None,
        question_id: Optional[str] = None,
        question_title: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.sub_code = sub_code
        self.question_id = question_id
        self.question_title = question_title

    def to_payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.sub_code:
            body["code"] = self.sub_code
        if self.question_id:
            body["perguntaId"] = self.question_id
        if self.question_title:
            body["perguntaFaltante"] = self.question_title
        return body


class UnauthenticatedError(ChecklistError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(ChecklistError):
    status_code = 403
    code = "forbidden"


class ValidationError(ChecklistError):
    status_code = 422
    code = "validation_error"


class NotFoundError(ChecklistError):
    status_code = 404
    code = "not_found"


class InternalError(ChecklistError):
    status_code = 500
    code = "internal_error"


SCOPE_EMPTY = "scope_vazio"
UNIT_OUT_OF_SCOPE = "unidade_fora_do_escopo"
