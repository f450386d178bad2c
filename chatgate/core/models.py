"""Request and stream event models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from chatgate.config.endpoints import default_endpoint
from chatgate.config.settings import settings


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    role: Literal["user", "assistant", "system"]
    content: str = ""


class AdditionalProps(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    enableIntermediateSteps: bool = True


class ChatApiRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    messages: list[ChatMessage] = Field(default_factory=list)
    httpEndpoint: str = Field(default_factory=lambda: default_endpoint(settings.default_endpoint_label).value)
    optionalGenerationParameters: str = ""
    additionalProps: AdditionalProps = Field(default_factory=AdditionalProps)


class IntermediateStepContent(BaseModel):
    name: Any = "Step"
    payload: Any = "No details"


class IntermediateStepEvent(BaseModel):
    id: Any = ""
    status: Any = "in_progress"
    error: Any = ""
    type: str = "system_intermediate"
    parent_id: Any = "default"
    intermediate_parent_id: Any = "default"
    content: IntermediateStepContent = Field(default_factory=IntermediateStepContent)
    time_stamp: Any = "default"
    index: int = 0
