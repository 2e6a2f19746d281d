"""Shared constants used across the pipeline stages and clients.

Single source of truth for VIN shape, attachment limits, marketplace hosts
and the canonical report section keys.
"""

from __future__ import annotations

import re

VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$", re.IGNORECASE)

URL_RE = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)

MAX_PHOTOS = 2
MAX_SNIPPETS = 3

# Seller listings carry a negotiation cushion on top of the target price.
SELLER_PRICE_BUFFER = 0.25

MARKETPLACE_HOSTS: frozenset[str] = frozenset({
    "autotrader.com",
    "bringatrailer.com",
    "cargurus.com",
    "carsandbids.com",
    "cars.com",
    "copart.com",
    "craigslist.org",
    "ebay.com",
    "facebook.com",
    "iaai.com",
    "manheim.com",
    "offerup.com",
})

# Hosts whose listings only count when the path points at a vehicle listing.
MARKETPLACE_PATH_HINTS: dict[str, tuple[str, ...]] = {
    "facebook.com": ("/marketplace",),
    "ebay.com": ("/itm", "/motors"),
}

# Canonical section keys, in the order the generated report must present them.
SECTION_RECAP = "recap"
SECTION_BREAKDOWN = "breakdown"
SECTION_ISSUES = "issues"
SECTION_CHECKLIST = "checklist"
SECTION_RECALLS = "recall_risks"
SECTION_IMAGES = "image_intelligence"
SECTION_REAL_TALK = "real_talk"
SECTION_ACTION = "recommended_action"
SECTION_MONEY_MATH = "money_math"
SECTION_VERDICT = "verdict"
SECTION_COMPS = "market_comps"
SECTION_PRICING = "pricing_justification"
SECTION_ALTERNATIVES = "alternatives"

SECTION_ORDER: tuple[str, ...] = (
    SECTION_RECAP,
    SECTION_BREAKDOWN,
    SECTION_ISSUES,
    SECTION_CHECKLIST,
    SECTION_RECALLS,
    SECTION_IMAGES,
    SECTION_REAL_TALK,
    SECTION_ACTION,
    SECTION_MONEY_MATH,
    SECTION_VERDICT,
    SECTION_COMPS,
    SECTION_PRICING,
    SECTION_ALTERNATIVES,
)

NO_RECALL_DATA = "No recall data available for this vehicle."
