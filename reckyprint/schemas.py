"""Schemas for messages exchanged with the Recky server."""

import base64
import binascii
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Envelope(BaseModel):
    """Every message is ``{"action": ..., "payload": ...}``."""

    model_config = ConfigDict(extra="ignore")

    action: str = Field(..., min_length=1)
    payload: Any = None


def normalize_base64(value: str) -> str:
    """Drop line breaks and restore missing padding."""
    value = "".join(value.split())
    return value + "=" * (-len(value) % 4)


class SilentPrintPayload(BaseModel):
    """Payload of a ``silentPrint`` job."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    file: str = Field(..., min_length=1, description="Document, base64 encoded")
    filename: str = Field(..., min_length=1)
    destination: str | None = Field(None, alias="destino")
    content_type: str | None = Field(None, alias="contentType")
    job_id: str | None = Field(None, alias="jobId")
    user_id: str | int | None = Field(None, alias="idUsuario")

    @field_validator("file")
    @classmethod
    def validate_base64(cls, v: str) -> str:
        v = normalize_base64(v)
        if not v:
            raise ValueError("file is empty")
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"file is not valid base64: {e}") from e
        return v

    @field_validator("job_id", mode="before")
    @classmethod
    def coerce_job_id(cls, v):
        return str(v) if v is not None else None

    def decode_file(self) -> bytes:
        return base64.b64decode(normalize_base64(self.file))


class AuthenticatePayload(BaseModel):
    token: str
    agent_name: str = Field(..., serialization_alias="agentName")


class QueueStatsPayload(BaseModel):
    total: int
    processed: int
    failed: int
    in_queue: int = Field(..., serialization_alias="inQueue")
    is_processing: bool = Field(..., serialization_alias="isProcessing")


def outbound(action: str, payload: BaseModel | dict | None = None) -> dict:
    """Build an outbound message dict."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True)
    return {"action": action, "payload": payload or {}}


class TokenRequest(BaseModel):
    """Body of ``POST /token`` on the control endpoint."""

    token: str = Field(..., min_length=1)
