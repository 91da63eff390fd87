from __future__ import annotations

from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

SubmissionStatus = Literal["DRAFT", "FINALIZED"]


class AnswerPayload(BaseModel):
    """One entry of the multipart `answers` JSON array."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    pergunta_id: str = Field(..., alias="perguntaId", min_length=1)
    tipo: Optional[str] = None
    valor_texto: Optional[Any] = Field(default=None, alias="valorTexto")
    valor_boolean: Optional[Union[bool, str]] = Field(default=None, alias="valorBoolean")
    valor_numero: Optional[Union[float, str]] = Field(default=None, alias="valorNumero")
    valor_opcao: Optional[Any] = Field(default=None, alias="valorOpcao")
    nota: Optional[int] = Field(default=None, ge=1, le=5)
    foto_url: Optional[Union[str, List[Any]]] = Field(default=None, alias="fotoUrl")
    observacao: Optional[str] = None


AnswerPayloadList = TypeAdapter(List[AnswerPayload])


class ManagerSignatureIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assinatura_data_url: Optional[str] = Field(default=None, alias="assinaturaDataUrl")
