"""Gating decisions: a closed union of Allow, Deny and Defer."""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class Allow(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["allow"] = "allow"
    # Runs the orchestrator must cancel before triggering (replace policy)
    cancel_run_ids: tuple[str, ...] = ()


class Deny(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["deny"] = "deny"
    reason: str = Field(..., min_length=1)


class Defer(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["defer"] = "defer"
    reason: str = Field(..., min_length=1)
    retry_after: datetime


Decision = Annotated[Union[Allow, Deny, Defer], Field(discriminator="kind")]


class EvaluateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fire_time: datetime | None = None
