"""Schema for structured-mode generation output."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class StructuredMoneyMath(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    asking_price: float | None = None
    repairs_low: float | None = None
    repairs_high: float | None = None
    fees: float | None = None
    all_in_low: float | None = None
    all_in_high: float | None = None
    max_price_to_pay: float | None = None
    resale_value: float | None = None


class StructuredReport(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    recap: str
    breakdown: str
    issues: list[str] = Field(min_length=1, max_length=5)
    checklist: list[str]
    recall_risks: str
    image_intelligence: str | None = None
    real_talk: str
    recommended_action: str
    money_math: StructuredMoneyMath
    verdict: Literal["Talk", "Walk", "Run"]
    market_comps: list[str] = Field(default_factory=list)
    pricing_justification: str
    alternatives: list[str] = Field(default_factory=list)
