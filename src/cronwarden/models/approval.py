"""Pydantic models for the local approval workflow."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ApprovalDecisionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    decision: Literal["approved", "rejected"]
    decided_by: str = Field(..., min_length=1, max_length=200)
    reason: str | None = Field(None, max_length=2000)
