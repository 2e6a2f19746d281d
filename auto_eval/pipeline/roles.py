"""Role-locked business rules.

One strategy per role decides the framing text, which report sections are
required, which money-math rows appear and how the money math is derived.
The role itself is trusted input and never re-inferred here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from cip_protocol import DomainConfig

from auto_eval.config import (
    BUYER_DOMAIN_CONFIG,
    FLIPPER_DOMAIN_CONFIG,
    PREMIUM_DOMAIN_CONFIG,
    SELLER_DOMAIN_CONFIG,
)
from auto_eval.constants import (
    SECTION_ACTION,
    SECTION_ALTERNATIVES,
    SECTION_BREAKDOWN,
    SECTION_CHECKLIST,
    SECTION_COMPS,
    SECTION_IMAGES,
    SECTION_ISSUES,
    SECTION_MONEY_MATH,
    SECTION_ORDER,
    SECTION_PRICING,
    SECTION_REAL_TALK,
    SECTION_RECALLS,
    SECTION_RECAP,
    SECTION_VERDICT,
    SELLER_PRICE_BUFFER,
)
from auto_eval.models import MoneyMath, Role

SECTION_TITLES: dict[str, str] = {
    SECTION_RECAP: "Submission Recap",
    SECTION_BREAKDOWN: "Evaluation Breakdown",
    SECTION_ISSUES: "Top 5 Issues",
    SECTION_CHECKLIST: "Inspection Checklist",
    SECTION_RECALLS: "Recall Risks",
    SECTION_IMAGES: "Image Intelligence",
    SECTION_REAL_TALK: "Real Talk",
    SECTION_ACTION: "Recommended Action",
    SECTION_MONEY_MATH: "Money Math",
    SECTION_VERDICT: "Verdict",
    SECTION_COMPS: "Market Comps",
    SECTION_PRICING: "Pricing Justification",
    SECTION_ALTERNATIVES: "Suggested Alternatives",
}


@dataclass
class MoneyFigures:
    """Raw figures pulled from a generated report before recomputation."""

    asking_price: float | None = None
    repairs_low: float | None = None
    repairs_high: float | None = None
    fees: float | None = None
    max_price_to_pay: float | None = None
    resale_value: float | None = None
    all_in_low: float | None = None
    all_in_high: float | None = None


def _money(value: float) -> float:
    return round(value, 2)


class RoleRules:
    role: Role
    domain: DomainConfig
    money_math_title = "Money Math"
    money_math_rows: tuple[str, ...] = ()
    framing: tuple[str, ...] = ()
    has_max_price = True
    has_roi = False
    offers_alternatives = True

    def section_titles(self) -> dict[str, str]:
        titles = dict(SECTION_TITLES)
        titles[SECTION_MONEY_MATH] = self.money_math_title
        return titles

    def required_sections(self, *, has_images: bool) -> list[str]:
        sections = []
        for key in SECTION_ORDER:
            if key == SECTION_IMAGES and not has_images:
                continue
            if key == SECTION_ALTERNATIVES and not self.offers_alternatives:
                continue
            sections.append(key)
        return sections

    def rules_text(self) -> list[str]:
        rules = list(self.framing)
        rules.append(
            "Recalls are leverage and opportunity: explain how an open recall "
            "can be remedied for free and used in negotiation. Never treat a "
            "recall alone as a reason to walk away."
        )
        rules.append(
            f"The {self.money_math_title} table must be a markdown table with "
            "these rows, in order: " + ", ".join(self.money_math_rows) + "."
        )
        rules.append(
            "The verdict section must contain exactly one of these words: "
            "Talk, Walk, Run."
        )
        if self.offers_alternatives:
            rules.append(
                "Only when the verdict is Walk or Run, add a Suggested "
                "Alternatives section with 2-3 comparable vehicles; otherwise "
                "omit it."
            )
        return rules

    def compute_money_math(self, figures: MoneyFigures) -> MoneyMath | None:
        """Deterministic money math from the figures; ``None`` without an asking price."""
        if figures.asking_price is None:
            return None
        asking = figures.asking_price
        low = figures.repairs_low if figures.repairs_low is not None else 0.0
        high = figures.repairs_high if figures.repairs_high is not None else low
        if high < low:
            low, high = high, low
        fees = figures.fees or 0.0
        return MoneyMath(
            asking_price=_money(asking),
            repairs_low=_money(low),
            repairs_high=_money(high),
            fees=_money(fees),
            all_in_low=_money(asking + low + fees),
            all_in_high=_money(asking + high + fees),
        )


class BuyerRules(RoleRules):
    role = Role.BUYER
    domain = BUYER_DOMAIN_CONFIG
    money_math_rows = (
        "Asking Price",
        "Repairs (Low-High)",
        "Fees",
        "All-In (Low-High)",
        "Max Price to Pay",
        "Savings",
    )
    framing = (
        "Frame the report around the safest maximum price this buyer should "
        "pay. Max Price to Pay must never exceed the asking price.",
        "Do not mention resale value, ROI, profit or bids.",
    )

    def compute_money_math(self, figures: MoneyFigures) -> MoneyMath | None:
        math = super().compute_money_math(figures)
        if math is None:
            return None
        if figures.max_price_to_pay is not None:
            math.max_price_to_pay = _money(figures.max_price_to_pay)
            math.savings = _money(math.asking_price - figures.max_price_to_pay)
        return math


class PremiumRules(BuyerRules):
    role = Role.PREMIUM
    domain = PREMIUM_DOMAIN_CONFIG
    framing = BuyerRules.framing + (
        "Give at least five market comps with price, mileage and source, and "
        "walk through the pricing justification line by line.",
    )


class FlipperRules(RoleRules):
    role = Role.FLIPPER
    domain = FLIPPER_DOMAIN_CONFIG
    money_math_title = "ROI / Max Bid"
    money_math_rows = (
        "Asking Price",
        "Repairs (Low-High)",
        "Fees",
        "All-In (Low-High)",
        "Resale Value",
        "Max Bid",
        "ROI",
    )
    framing = (
        "Lead with ROI. Max Bid = (Resale / 2) - Repairs - Fees, using the "
        "high repair estimate.",
        "A full all-in cost breakdown is mandatory.",
    )
    has_roi = True

    def compute_money_math(self, figures: MoneyFigures) -> MoneyMath | None:
        math = super().compute_money_math(figures)
        if math is None:
            return None
        if figures.resale_value is not None:
            resale = figures.resale_value
            max_bid = resale / 2 - math.repairs_high - math.fees
            math.resale_value = _money(resale)
            math.max_price_to_pay = _money(max_bid)
            math.savings = _money(math.asking_price - max_bid)
            if math.all_in_high:
                math.roi_percent = round(
                    (resale - math.all_in_high) / math.all_in_high * 100, 1
                )
        elif figures.max_price_to_pay is not None:
            math.max_price_to_pay = _money(figures.max_price_to_pay)
            math.savings = _money(math.asking_price - figures.max_price_to_pay)
        return math


class SellerRules(RoleRules):
    role = Role.SELLER
    domain = SELLER_DOMAIN_CONFIG
    money_math_title = "Listing Price Math"
    money_math_rows = (
        "Asking Price",
        "Prep Repairs (Low-High)",
        "Fees",
        "All-In (Low-High)",
        "Listing Range",
    )
    framing = (
        "Frame the report as listing prep: what to fix before listing, what "
        "to disclose, and how to present the vehicle.",
        f"The listing range starts at the target price and adds a "
        f"{int(SELLER_PRICE_BUFFER * 100)}% negotiation buffer on top.",
        "Never state a maximum price to pay or a bid.",
    )
    has_max_price = False
    offers_alternatives = False

    def compute_money_math(self, figures: MoneyFigures) -> MoneyMath | None:
        math = super().compute_money_math(figures)
        if math is None:
            return None
        math.listing_low = math.asking_price
        math.listing_high = _money(math.asking_price * (1 + SELLER_PRICE_BUFFER))
        return math


_RULES: dict[Role, RoleRules] = {
    Role.BUYER: BuyerRules(),
    Role.SELLER: SellerRules(),
    Role.FLIPPER: FlipperRules(),
    Role.PREMIUM: PremiumRules(),
}


def rules_for(role: Role) -> RoleRules:
    return _RULES[role]


def find_prohibited(rules: RoleRules, text: str) -> list[tuple[str, str]]:
    """(category, phrase) pairs from the role's DomainConfig present in *text*."""
    hits = []
    lowered = text.lower()
    indicators = rules.domain.prohibited_indicators or {}
    for category, phrases in indicators.items():
        for phrase in phrases:
            if re.search(rf"\b{re.escape(phrase.lower())}\b", lowered):
                hits.append((category, phrase))
    return hits
