"""Deal evaluator MCP server: FastMCP entry point."""

from __future__ import annotations

import logging

from cip_protocol.orchestration.errors import (
    log_and_return_tool_error as _log_and_return_tool_error,
)
from mcp.server.fastmcp import FastMCP

from auto_eval.audit import AuditDispatcher
from auto_eval.config import EvaluatorConfig, load_env_file
from auto_eval.pipeline.orchestrator import build_audit_dispatcher
from auto_eval.tools.evaluate import (
    decode_vin_impl,
    evaluate_vehicle_impl,
    lookup_recalls_impl,
)

load_env_file()

mcp = FastMCP("AutoEval")
logger = logging.getLogger(__name__)

_config_ref: EvaluatorConfig | None = None
_audit_ref: AuditDispatcher | None = None


def _get_config() -> EvaluatorConfig:
    """Lazy accessor so tests can patch the environment before first use."""
    global _config_ref  # noqa: PLW0603
    if _config_ref is None:
        _config_ref = EvaluatorConfig.from_env()
    return _config_ref


def _get_audit() -> AuditDispatcher:
    global _audit_ref  # noqa: PLW0603
    if _audit_ref is None:
        _audit_ref = build_audit_dispatcher(_get_config())
    return _audit_ref


@mcp.tool()
async def evaluate_vehicle(
    role: str,
    zip_code: str = "",
    year: str = "",
    make: str = "",
    model: str = "",
    vin: str = "",
    condition_notes: str = "",
    listing_url: str = "",
    asking_price: str = "",
    repair_skill: str = "",
    raw: bool = False,
) -> str:
    """Evaluate a used-vehicle deal for a Buyer, Seller, Flipper or Premium user.

    Returns the generated report (recap, issues, recalls, money math and a
    Talk/Walk/Run verdict) with recomputed figures and any validation
    warnings. A lone marketplace link returns the scraped listing only.
    """
    try:
        return await evaluate_vehicle_impl(
            _get_config(),
            _get_audit(),
            role=role,
            zip_code=zip_code,
            year=year,
            make=make,
            model=model,
            vin=vin or None,
            condition_notes=condition_notes,
            listing_url=listing_url or None,
            asking_price=asking_price or None,
            repair_skill=repair_skill,
            raw=raw,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="evaluate_vehicle",
            exc=exc,
            user_message=(
                "I am having trouble evaluating that vehicle right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
async def decode_vin(vin: str, raw: bool = False) -> str:
    """Decode a 17-character VIN into year, make, model and build details via NHTSA."""
    try:
        return await decode_vin_impl(vin=vin, raw=raw)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="decode_vin",
            exc=exc,
            user_message=(
                "I am having trouble decoding that VIN right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
async def lookup_recalls(
    make: str, model: str, model_year: int, raw: bool = False
) -> str:
    """Look up NHTSA recall campaigns for a make/model/year."""
    try:
        return await lookup_recalls_impl(
            make=make, model=model, model_year=model_year, raw=raw
        )
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="lookup_recalls",
            exc=exc,
            user_message=(
                "I am having trouble retrieving NHTSA recall data right now. "
                "Please try again in a moment."
            ),
        )


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    mcp.run()


if __name__ == "__main__":
    main()
