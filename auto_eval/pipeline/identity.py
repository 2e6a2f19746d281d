"""Vehicle identity resolution: user input first, VIN decode as fallback."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from auto_eval.models import EvaluationRequest, Provenance, VehicleIdentity
from auto_eval.normalization import normalize_text, normalize_vin

logger = logging.getLogger(__name__)

_DECODED_ATTRIBUTES = {
    "Trim": "trim",
    "BodyClass": "body_class",
    "DriveType": "drive_type",
    "FuelTypePrimary": "fuel_type",
    "EngineCylinders": "engine_cylinders",
    "DisplacementL": "displacement_l",
    "TransmissionStyle": "transmission",
    "PlantCountry": "plant_country",
}


class VinDecoder(Protocol):
    async def decode_vin(self, vin: str) -> dict[str, Any] | None: ...


def _decoded_year(decoded: dict[str, Any]) -> str:
    raw = str(decoded.get("ModelYear") or "").strip()
    try:
        return str(int(raw))
    except ValueError:
        return ""


class IdentityResolver:
    def __init__(self, decoder: VinDecoder | None, *, timeout: float = 5.0) -> None:
        self.decoder = decoder
        self.timeout = timeout

    async def _decode(self, vin: str) -> dict[str, Any] | None:
        if self.decoder is None:
            return None
        try:
            decoded = await asyncio.wait_for(self.decoder.decode_vin(vin), self.timeout)
        except asyncio.TimeoutError:
            logger.warning("VIN decode timed out after %.1fs for %s", self.timeout, vin)
            return None
        except Exception as exc:  # noqa: BLE001
            logger.warning("VIN decode failed for %s: %s", vin, exc)
            return None
        if not isinstance(decoded, dict):
            logger.warning("VIN decode returned no result for %s", vin)
            return None
        return decoded

    async def resolve(self, request: EvaluationRequest) -> VehicleIdentity:
        """Merge user fields with decoded ones. Never raises."""
        user = {
            "year": normalize_text(request.year),
            "make": normalize_text(request.make),
            "model": normalize_text(request.model),
        }
        vin = normalize_vin(request.vin)
        if request.vin and vin is None:
            logger.warning("Ignoring malformed VIN %r", request.vin)

        # Decode even when every field is user-supplied; trim/body/engine
        # attributes still enrich the report.
        decoded = await self._decode(vin) if vin else None

        decoded_fields = {}
        attributes: dict[str, str] = {}
        if decoded:
            decoded_fields = {
                "year": _decoded_year(decoded),
                "make": normalize_text(str(decoded.get("Make") or "")),
                "model": normalize_text(str(decoded.get("Model") or "")),
            }
            for key, name in _DECODED_ATTRIBUTES.items():
                value = normalize_text(str(decoded.get(key) or ""))
                if value and value.lower() != "not applicable":
                    attributes[name] = value

        resolved: dict[str, str] = {}
        provenance: dict[str, Provenance] = {}
        for name in ("year", "make", "model"):
            if user[name]:
                resolved[name] = user[name]
                provenance[name] = Provenance.USER
            elif decoded_fields.get(name):
                resolved[name] = decoded_fields[name]
                provenance[name] = Provenance.DECODED
            else:
                resolved[name] = ""
                provenance[name] = Provenance.DEFAULT

        if not resolved["year"]:
            resolved["year"] = str(datetime.now(timezone.utc).year)

        return VehicleIdentity(
            year=resolved["year"],
            make=resolved["make"],
            model=resolved["model"],
            provenance=provenance,
            vin=vin,
            decoded_attributes=attributes,
        )
