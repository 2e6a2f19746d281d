"""Typed records passed between pipeline stages."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, BinaryIO

from auto_eval.errors import InvalidRequestError


class Role(str, Enum):
    BUYER = "Buyer"
    SELLER = "Seller"
    FLIPPER = "Flipper"
    PREMIUM = "Premium"

    @classmethod
    def parse(cls, value: str | None) -> Role:
        """Case-insensitive lookup; unknown roles are a client-input error."""
        text = (value or "").strip().lower()
        for role in cls:
            if role.value.lower() == text:
                return role
        raise InvalidRequestError(
            f"Unknown role '{value}'. Expected one of: "
            + ", ".join(r.value for r in cls),
            details={"role": value},
        )


class Provenance(str, Enum):
    USER = "user"
    DECODED = "decoded"
    DEFAULT = "default"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class Verdict(str, Enum):
    TALK = "Talk"
    WALK = "Walk"
    RUN = "Run"


_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMEOUT})
_STATUS_RANK = {JobStatus.PENDING: 0, JobStatus.RUNNING: 1}


# ── Inbound ─────────────────────────────────────────────────────────


@dataclass
class PhotoUpload:
    filename: str
    size: int
    content_type: str
    stream: BinaryIO | None = None


@dataclass
class EvaluationRequest:
    """A submission after transport parsing: every field single-valued."""

    role: Role
    zip_code: str = ""
    repair_skill: str = ""
    year: str = ""
    make: str = ""
    model: str = ""
    condition_notes: str = ""
    vin: str | None = None
    listing_url: str | None = None
    asking_price: float | None = None
    photos: list[PhotoUpload] = field(default_factory=list)

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe view for audit records (photo handles omitted)."""
        return {
            "role": self.role.value,
            "repairSkill": self.repair_skill,
            "year": self.year,
            "make": self.make,
            "model": self.model,
            "zip": self.zip_code,
            "conditionNotes": self.condition_notes,
            "vin": self.vin,
            "listingURL": self.listing_url,
            "price": self.asking_price,
            "photos": [
                {"filename": p.filename, "size": p.size, "type": p.content_type}
                for p in self.photos
            ],
        }


@dataclass
class InvocationContext:
    endpoint: str = "/api/submitEvaluation"
    method: str = "POST"
    session_id: str | None = None
    user_agent: str | None = None
    ip: str | None = None


# ── Derived ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class VehicleIdentity:
    year: str
    make: str
    model: str
    provenance: dict[str, Provenance]
    vin: str | None = None
    decoded_attributes: dict[str, str] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return " ".join(part for part in (self.year, self.make, self.model) if part)

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "make": self.make,
            "model": self.model,
            "vin": self.vin,
            "provenance": {k: v.value for k, v in self.provenance.items()},
            "decoded_attributes": dict(self.decoded_attributes),
        }


@dataclass
class SearchSnippet:
    title: str
    snippet: str
    link: str


@dataclass
class RecallData:
    count: int = 0
    summaries: list[str] = field(default_factory=list)
    available: bool = False


@dataclass
class ScrapedListing:
    url: str
    title: str | None = None
    price: float | None = None
    mileage: int | None = None
    condition: str | None = None

    def is_empty(self) -> bool:
        return not any((self.title, self.price, self.mileage, self.condition))


@dataclass
class EnrichmentBundle:
    recalls: RecallData = field(default_factory=RecallData)
    retail: list[SearchSnippet] = field(default_factory=list)
    auction: list[SearchSnippet] = field(default_factory=list)
    vin: list[SearchSnippet] = field(default_factory=list)
    listing: ScrapedListing | None = None
    failures: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("failures", None)
        return data


# ── Generation ──────────────────────────────────────────────────────


@dataclass
class GenerationJob:
    """Lifecycle record for one generation run; status only moves forward."""

    id: str
    submitted_payload: dict[str, Any] = field(default_factory=dict)
    attached_asset_ids: list[str] = field(default_factory=list)
    run_id: str | None = None
    status: JobStatus = JobStatus.PENDING
    elapsed: float = 0.0
    retries: int = 0
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    def advance(self, status: JobStatus) -> None:
        if status == self.status and not self.is_terminal:
            return
        if self.is_terminal:
            raise ValueError(
                f"job {self.id} already finalized as {self.status.value}"
            )
        if status in _STATUS_RANK and _STATUS_RANK[status] < _STATUS_RANK[self.status]:
            raise ValueError(
                f"job {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status


@dataclass
class RawOutput:
    text: str
    job: GenerationJob


# ── Report ──────────────────────────────────────────────────────────


@dataclass
class MoneyMath:
    asking_price: float
    repairs_low: float
    repairs_high: float
    fees: float
    all_in_low: float
    all_in_high: float
    max_price_to_pay: float | None = None
    savings: float | None = None
    resale_value: float | None = None
    roi_percent: float | None = None
    listing_low: float | None = None
    listing_high: float | None = None


@dataclass
class ReportWarning:
    code: str
    message: str


@dataclass
class EvaluationReport:
    raw_text: str
    sections: dict[str, str] = field(default_factory=dict)
    verdict: Verdict | None = None
    money_math: MoneyMath | None = None
    warnings: list[ReportWarning] = field(default_factory=list)
    mode: str = "markdown"
    listing: ScrapedListing | None = None

    def warn(self, code: str, message: str) -> None:
        self.warnings.append(ReportWarning(code, message))

    def has_warning(self, code: str) -> bool:
        return any(w.code == code for w in self.warnings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "rawText": self.raw_text,
            "sections": dict(self.sections),
            "verdict": self.verdict.value if self.verdict else None,
            "moneyMath": asdict(self.money_math) if self.money_math else None,
            "warnings": [asdict(w) for w in self.warnings],
            "listing": asdict(self.listing) if self.listing else None,
        }


@dataclass
class AuditLogEntry:
    endpoint: str
    method: str
    status_code: int
    request_snapshot: dict[str, Any]
    response_snapshot: dict[str, Any]
    session_id: str | None = None
    user_agent: str | None = None
    ip: str | None = None
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_row(self) -> dict[str, Any]:
        """Column mapping for the ``api_logs`` table."""
        return {
            "endpoint": self.endpoint,
            "method": self.method,
            "status_code": self.status_code,
            "request_body": self.request_snapshot,
            "response_body": self.response_snapshot,
            "session_id": self.session_id,
            "user_agent": self.user_agent,
            "ip_address": self.ip,
            "created_at": self.timestamp,
        }
