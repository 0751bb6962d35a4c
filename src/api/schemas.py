"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class OutboundCallRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    number: str | None = Field(default=None, description="E.164 destination, e.g. +1415...")
    prompt: str | None = None
    first_message: str | None = None


class OutboundCallResponse(BaseModel):
    success: bool = True
    message: str = "Call initiated"
    call_sid: str = Field(serialization_alias="callSid")


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


class HealthResponse(BaseModel):
    message: str = "Server is running"
