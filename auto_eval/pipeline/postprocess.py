"""Turn generated text into a validated ``EvaluationReport``.

Markdown output is split on headings; structured output is validated
against ``StructuredReport``. Either way the money math is recomputed from
the figures rather than trusted, and rule violations become warnings.
"""

from __future__ import annotations

import json
import logging
import re

from pydantic import ValidationError

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
)
from auto_eval.errors import MalformedOutputError
from auto_eval.models import EvaluationReport, EvaluationRequest, Role, Verdict
from auto_eval.normalization import parse_amount_range, parse_amounts
from auto_eval.pipeline.roles import MoneyFigures, RoleRules, find_prohibited, rules_for
from auto_eval.pipeline.schema import StructuredReport

logger = logging.getLogger(__name__)

# Checked in order; first alias pattern found in the normalized label wins.
_SECTION_ALIASES: tuple[tuple[str, tuple[str, ...]], ...] = (
    (SECTION_RECAP, ("submission recap", "recap")),
    (SECTION_RECALLS, ("recalls?",)),
    (SECTION_IMAGES, ("image intelligence", "photo analysis", "image analysis")),
    (SECTION_REAL_TALK, ("real talk",)),
    (SECTION_ACTION, ("recommended action", "next steps")),
    (SECTION_PRICING, ("pricing justification", "justification")),
    (SECTION_COMPS, ("market comps?", "comparables", "comps")),
    (SECTION_ALTERNATIVES, ("alternatives?",)),
    (
        SECTION_MONEY_MATH,
        ("money math", "max bid", "roi", "listing price math", "cost breakdown", "all in"),
    ),
    (SECTION_VERDICT, ("verdict",)),
    (SECTION_ISSUES, ("issues?", "red flags")),
    (SECTION_CHECKLIST, ("checklist",)),
    (SECTION_BREAKDOWN, ("evaluation breakdown", "breakdown")),
)

_HEADING_RE = re.compile(r"^\s{0,3}#{1,4}\s+(.+?)\s*#*\s*$")
_BOLD_LABEL_RE = re.compile(
    r"^\s*(?P<marker>[-*+]\s+|\d+[.)]\s*)?\*\*(?P<label>.+?):?\*\*:?\s*(?P<tail>.*)$"
)
_VERDICT_RE = re.compile(r"\b(Talk|Walk|Run|TALK|WALK|RUN)\b")
_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

_MISMATCH_TOLERANCE = 1.0
_ALL_IN_LABELS = frozenset(
    {"total", "total cost", "total low high", "total cost low high"}
)


def _normalize_label(label: str) -> str:
    text = re.sub(r"[*_`]", "", label).lower()
    return " ".join(re.sub(r"[^a-z0-9]+", " ", text).split())


# Headings a role can ask for, by normalized label. A bold label with a list
# marker or trailing text only opens a section when it is one of these.
_EXACT_TITLES: dict[str, str] = {
    _normalize_label(title): key
    for role in Role
    for key, title in rules_for(role).section_titles().items()
}


def canonical_section(label: str) -> str | None:
    normalized = _normalize_label(label)
    for key, aliases in _SECTION_ALIASES:
        if any(re.search(rf"\b{alias}\b", normalized) for alias in aliases):
            return key
    return None


def split_sections(text: str) -> dict[str, str]:
    """Ordered section map keyed by canonical name (or a slug for unknowns)."""
    sections: dict[str, list[str]] = {}
    current = "preamble"
    for line in text.splitlines():
        heading = _HEADING_RE.match(line)
        bold = None if heading else _BOLD_LABEL_RE.match(line)
        if heading:
            label, _, tail = heading.group(1).partition(":")
        elif bold:
            label, tail = bold.group("label"), bold.group("tail")
        else:
            label, tail = "", ""
        if bold and (bold.group("marker") or tail.strip()):
            key = _EXACT_TITLES.get(_normalize_label(label))
        else:
            key = canonical_section(label) if label else None
        if heading and key is None:
            key = _normalize_label(label).replace(" ", "_") or "section"
        # A bold label naming the section we are already in is a row, not a header.
        if key is None or (bold and key == current):
            sections.setdefault(current, []).append(line)
            continue
        current = key
        sections.setdefault(current, [])
        if tail.strip():
            sections[current].append(tail.strip())
    result = {}
    for key, lines in sections.items():
        body = "\n".join(lines).strip()
        if body or key != "preamble":
            result[key] = body
    return result


def extract_verdict(sections: dict[str, str], text: str) -> tuple[Verdict | None, str | None]:
    """Single verdict token, or ``None`` plus the warning code explaining why."""
    source = sections.get(SECTION_VERDICT)
    if source is None:
        match = re.search(r"verdict\W{0,6}(Talk|Walk|Run)\b", text, re.IGNORECASE)
        source = match.group(1) if match else ""
    tokens = {t.title() for t in _VERDICT_RE.findall(source)}
    if len(tokens) == 1:
        return Verdict(tokens.pop()), None
    if not tokens:
        return None, "verdict_missing"
    return None, "verdict_ambiguous"


def extract_money_figures(section: str) -> MoneyFigures:
    """Read money-math rows from a markdown table or ``Label: value`` lines."""
    figures = MoneyFigures()
    for line in section.splitlines():
        if "|" in line:
            cells = [c.strip() for c in line.strip().strip("|").split("|")]
            if len(cells) < 2 or set("".join(cells)) <= set("-: "):
                continue
            label, value = cells[0], " ".join(cells[1:])
        elif ":" in line:
            label, _, value = line.partition(":")
        else:
            continue
        label = _normalize_label(label)
        if not label:
            continue
        if "repair" in label and "all in" not in label:
            rng = parse_amount_range(value)
            if rng:
                figures.repairs_low, figures.repairs_high = rng
        elif "fee" in label and "all in" not in label:
            amounts = parse_amounts(value)
            if amounts:
                figures.fees = abs(amounts[0])
        elif "all in" in label or label in _ALL_IN_LABELS:
            rng = parse_amount_range(value)
            if rng:
                figures.all_in_low, figures.all_in_high = rng
        elif "max price" in label or "max bid" in label or "maximum" in label:
            amounts = parse_amounts(value)
            if amounts:
                figures.max_price_to_pay = amounts[0]
        elif "asking" in label:
            amounts = parse_amounts(value)
            if amounts:
                figures.asking_price = abs(amounts[0])
        elif "resale" in label:
            amounts = parse_amounts(value)
            if amounts:
                figures.resale_value = abs(amounts[0])
    return figures


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


class ResponsePostProcessor:
    def __init__(self, *, mode: str = "markdown") -> None:
        self.mode = mode

    def process(self, raw_text: str, request: EvaluationRequest) -> EvaluationReport:
        rules = rules_for(request.role)
        if self.mode == "structured":
            report, figures = self._parse_structured(raw_text)
        else:
            report, figures = self._parse_markdown(raw_text)

        if not rules.offers_alternatives and SECTION_ALTERNATIVES in report.sections:
            report.sections.pop(SECTION_ALTERNATIVES)
            report.warn(
                "role_section_violation",
                f"{rules.role.value} reports do not include suggested alternatives.",
            )
        elif report.verdict == Verdict.TALK:
            report.sections.pop(SECTION_ALTERNATIVES, None)

        self._check_role_sections(report, rules)
        self._recompute(report, figures, request, rules)
        return report

    # ── Parsing ─────────────────────────────────────────────────────

    def _parse_markdown(self, raw_text: str) -> tuple[EvaluationReport, MoneyFigures]:
        sections = split_sections(raw_text)
        report = EvaluationReport(raw_text=raw_text, sections=sections, mode="markdown")
        verdict, problem = extract_verdict(sections, raw_text)
        report.verdict = verdict
        if problem == "verdict_missing":
            report.warn(problem, "No Talk/Walk/Run verdict found in the report.")
        elif problem == "verdict_ambiguous":
            report.warn(problem, "More than one verdict token found in the verdict section.")
        figures = extract_money_figures(sections.get(SECTION_MONEY_MATH, ""))
        return report, figures

    def _parse_structured(self, raw_text: str) -> tuple[EvaluationReport, MoneyFigures]:
        text = raw_text.strip()
        fenced = _FENCE_RE.match(text)
        if fenced:
            text = fenced.group(1)
        try:
            parsed = StructuredReport.model_validate_json(text)
        except ValidationError as exc:
            logger.error("Structured report failed validation: %s", exc.error_count())
            raise MalformedOutputError(
                "The generated report did not match the expected format.",
                raw_text=raw_text,
                errors=[f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors()],
            ) from exc

        values = {
            SECTION_RECAP: parsed.recap,
            SECTION_BREAKDOWN: parsed.breakdown,
            SECTION_ISSUES: _bullets(parsed.issues),
            SECTION_CHECKLIST: _bullets(parsed.checklist),
            SECTION_RECALLS: parsed.recall_risks,
            SECTION_IMAGES: parsed.image_intelligence or "",
            SECTION_REAL_TALK: parsed.real_talk,
            SECTION_ACTION: parsed.recommended_action,
            SECTION_MONEY_MATH: json.dumps(parsed.money_math.model_dump(exclude_none=True)),
            SECTION_VERDICT: parsed.verdict,
            SECTION_COMPS: _bullets(parsed.market_comps),
            SECTION_PRICING: parsed.pricing_justification,
            SECTION_ALTERNATIVES: _bullets(parsed.alternatives),
        }
        sections = {key: values[key] for key in SECTION_ORDER if values.get(key)}
        report = EvaluationReport(
            raw_text=raw_text,
            sections=sections,
            verdict=Verdict(parsed.verdict),
            mode="structured",
        )
        mm = parsed.money_math
        figures = MoneyFigures(
            asking_price=mm.asking_price,
            repairs_low=mm.repairs_low,
            repairs_high=mm.repairs_high,
            fees=mm.fees,
            max_price_to_pay=mm.max_price_to_pay,
            resale_value=mm.resale_value,
            all_in_low=mm.all_in_low,
            all_in_high=mm.all_in_high,
        )
        return report, figures

    # ── Validation ──────────────────────────────────────────────────

    def _check_role_sections(self, report: EvaluationReport, rules: RoleRules) -> None:
        for category, phrase in find_prohibited(rules, report.raw_text):
            report.warn(
                "role_section_violation",
                f"{rules.role.value} report contains prohibited content "
                f"({category}: '{phrase}').",
            )
        if rules.has_roi and SECTION_MONEY_MATH not in report.sections:
            report.warn(
                "role_section_missing",
                f"{rules.role.value} report is missing the {rules.money_math_title} section.",
            )

    def _recompute(
        self,
        report: EvaluationReport,
        figures: MoneyFigures,
        request: EvaluationRequest,
        rules: RoleRules,
    ) -> None:
        generated_max = figures.max_price_to_pay
        if request.asking_price is not None:
            figures.asking_price = request.asking_price

        if not rules.has_max_price and generated_max is not None:
            report.warn(
                "role_section_violation",
                f"{rules.role.value} report states a max price to pay "
                f"(${generated_max:,.0f}).",
            )
            figures.max_price_to_pay = None

        math = rules.compute_money_math(figures)
        report.money_math = math
        if math is None:
            if request.role != Role.SELLER:
                report.warn(
                    "money_math_missing",
                    "No asking price available; money math was not recomputed.",
                )
            return

        for name, generated, computed in (
            ("All-In low", figures.all_in_low, math.all_in_low),
            ("All-In high", figures.all_in_high, math.all_in_high),
        ):
            if generated is not None and abs(generated - computed) > _MISMATCH_TOLERANCE:
                report.warn(
                    "money_math_mismatch",
                    f"Generated {name} ${generated:,.0f} does not match "
                    f"recomputed ${computed:,.0f}.",
                )
        if (
            rules.has_roi
            and math.resale_value is not None
            and generated_max is not None
            and math.max_price_to_pay is not None
            and abs(generated_max - math.max_price_to_pay) > _MISMATCH_TOLERANCE
        ):
            report.warn(
                "money_math_mismatch",
                f"Generated Max Bid ${generated_max:,.0f} does not match "
                f"recomputed ${math.max_price_to_pay:,.0f}.",
            )

        if (
            rules.has_max_price
            and math.max_price_to_pay is not None
            and math.max_price_to_pay > math.asking_price
        ):
            report.warn(
                "max_price_exceeds_asking",
                f"Max price to pay ${math.max_price_to_pay:,.0f} exceeds the "
                f"asking price ${math.asking_price:,.0f}.",
            )
