"""MCP tool implementations (deal evaluation, VIN decode, recall lookup)."""

from __future__ import annotations

import json
from typing import Any

from auto_eval.audit import AuditDispatcher
from auto_eval.clients import SHARED_NHTSA_CACHE, NHTSAClient
from auto_eval.config import EvaluatorConfig
from auto_eval.errors import EvaluationError, MalformedOutputError
from auto_eval.models import EvaluationReport, EvaluationRequest, InvocationContext, Role
from auto_eval.normalization import normalize_text, normalize_vin, parse_price
from auto_eval.pipeline.orchestrator import open_pipeline

_TOOL_EVALUATE = "evaluate_vehicle"
_TOOL_DECODE = "decode_vin"
_TOOL_RECALLS = "lookup_recalls"

_DECODE_FIELDS = (
    ("ModelYear", "Year"),
    ("Make", "Make"),
    ("Model", "Model"),
    ("Trim", "Trim"),
    ("BodyClass", "Body"),
    ("DriveType", "Drive"),
    ("FuelTypePrimary", "Fuel"),
    ("DisplacementL", "Engine (L)"),
    ("PlantCountry", "Plant country"),
)


def _build_raw_response(tool_name: str, data_context: dict[str, Any]) -> str:
    payload = {
        "_raw": True,
        "_tool": tool_name,
        "_meta": {"schema_version": 1},
        "data": data_context,
    }
    return json.dumps(payload, indent=2, default=str)


def _format_error(
    *,
    tool_name: str,
    raw: bool,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> str:
    if not raw:
        return message

    payload: dict[str, Any] = {"error": True, "code": code, "message": message}
    if details:
        payload["details"] = details
    return _build_raw_response(tool_name, payload)


def format_report(report: EvaluationReport) -> str:
    """Generated text followed by the recomputed figures and any warnings."""
    lines = [report.raw_text.strip()] if report.raw_text.strip() else []
    math = report.money_math
    if math is not None:
        lines += [
            "",
            "---",
            "Recomputed money math:",
            f"- Asking price: ${math.asking_price:,.0f}",
            f"- All-In: ${math.all_in_low:,.0f} - ${math.all_in_high:,.0f}",
        ]
        if math.max_price_to_pay is not None:
            lines.append(f"- Max price to pay: ${math.max_price_to_pay:,.0f}")
        if math.roi_percent is not None:
            lines.append(f"- ROI: {math.roi_percent:.1f}%")
        if math.listing_low is not None and math.listing_high is not None:
            lines.append(
                f"- Listing range: ${math.listing_low:,.0f} - ${math.listing_high:,.0f}"
            )
    if report.warnings:
        lines += ["", "Warnings:"]
        lines += [f"- [{w.code}] {w.message}" for w in report.warnings]
    return "\n".join(lines) or "No report was produced."


async def evaluate_vehicle_impl(
    config: EvaluatorConfig,
    audit: AuditDispatcher | None = None,
    *,
    role: str,
    zip_code: str = "",
    year: str = "",
    make: str = "",
    model: str = "",
    vin: str | None = None,
    condition_notes: str = "",
    listing_url: str | None = None,
    asking_price: str | float | None = None,
    repair_skill: str = "",
    raw: bool = False,
) -> str:
    try:
        parsed_role = Role.parse(role)
    except EvaluationError as exc:
        return _format_error(
            tool_name=_TOOL_EVALUATE,
            raw=raw,
            code=exc.code,
            message=exc.message,
            details=exc.details,
        )

    request = EvaluationRequest(
        role=parsed_role,
        zip_code=normalize_text(zip_code),
        repair_skill=normalize_text(repair_skill),
        year=normalize_text(str(year or "")),
        make=normalize_text(make),
        model=normalize_text(model),
        condition_notes=condition_notes or "",
        vin=normalize_text(vin) or None,
        listing_url=normalize_text(listing_url) or None,
        asking_price=parse_price(asking_price),
    )
    context = InvocationContext(endpoint=_TOOL_EVALUATE, method="MCP")

    try:
        async with open_pipeline(config, audit=audit) as pipeline:
            report = await pipeline.evaluate(request, context)
    except MalformedOutputError as exc:
        return _format_error(
            tool_name=_TOOL_EVALUATE,
            raw=raw,
            code=exc.code,
            message=exc.message,
            details={"errors": exc.details.get("errors"), "raw_text": exc.raw_text},
        )
    except EvaluationError as exc:
        details = dict(exc.details)
        job = getattr(exc, "job", None)
        if job is not None:
            details["job"] = {
                "status": job.status.value,
                "elapsed": round(job.elapsed, 1),
                "polls": job.retries,
                "error": job.error,
            }
        return _format_error(
            tool_name=_TOOL_EVALUATE,
            raw=raw,
            code=exc.code,
            message=exc.message,
            details=details,
        )

    if raw:
        return _build_raw_response(_TOOL_EVALUATE, {"report": report.to_dict()})
    return format_report(report)


async def decode_vin_impl(*, vin: str, raw: bool = False) -> str:
    normalized = normalize_vin(vin)
    if normalized is None:
        return _format_error(
            tool_name=_TOOL_DECODE,
            raw=raw,
            code="INVALID_VIN",
            message=(
                f"Invalid VIN '{vin}'. VIN must be 17 characters "
                "(letters/digits, excluding I/O/Q)."
            ),
        )

    async with NHTSAClient(cache=SHARED_NHTSA_CACHE) as client:
        decoded = await client.decode_vin(normalized)
    if not decoded:
        return _format_error(
            tool_name=_TOOL_DECODE,
            raw=raw,
            code="VIN_DECODE_FAILED",
            message=f"Could not decode VIN '{normalized}' via NHTSA. Verify the VIN is correct.",
            details={"vin": normalized},
        )

    fields = {
        label: str(decoded.get(key) or "").strip()
        for key, label in _DECODE_FIELDS
        if str(decoded.get(key) or "").strip()
        and str(decoded.get(key)).strip().lower() != "not applicable"
    }
    if raw:
        return _build_raw_response(_TOOL_DECODE, {"vin": normalized, "decoded": fields})
    lines = [f"VIN {normalized}:"]
    lines += [f"- {label}: {value}" for label, value in fields.items()]
    return "\n".join(lines)


async def lookup_recalls_impl(
    *, make: str, model: str, model_year: int, raw: bool = False
) -> str:
    if not make.strip() or not model.strip():
        return _format_error(
            tool_name=_TOOL_RECALLS,
            raw=raw,
            code="INVALID_INPUT",
            message="make and model are required.",
        )

    async with NHTSAClient(cache=SHARED_NHTSA_CACHE) as client:
        try:
            data = await client.get_recalls(make, model, model_year)
        except ValueError as exc:
            return _format_error(
                tool_name=_TOOL_RECALLS,
                raw=raw,
                code="INVALID_INPUT",
                message=str(exc),
                details={"model_year": model_year},
            )

    if data.get("error"):
        return _format_error(
            tool_name=_TOOL_RECALLS,
            raw=raw,
            code="RECALLS_UNAVAILABLE",
            message="No recall data: the NHTSA recall service could not be reached.",
            details={"error": data["error"]},
        )
    if raw:
        return _build_raw_response(
            _TOOL_RECALLS,
            {
                "vehicle": {"make": make, "model": model, "model_year": model_year},
                "count": data["count"],
                "summaries": data["summaries"],
            },
        )
    label = f"{model_year} {make.strip()} {model.strip()}"
    if not data["count"]:
        return f"No NHTSA recalls found for the {label}."
    lines = [f"{data['count']} NHTSA recall(s) for the {label}:"]
    lines += [f"- {summary}" for summary in data["summaries"]]
    return "\n".join(lines)
