"""
Scoring Engine
==============

Deterministic page score computed from PageFacts. Pure logic: no I/O,
no clock, no model calls.

GUARANTEES:
- score(facts) is a PURE FUNCTION: same facts + same SCORING_VERSION
  -> bit-identical ScoreResult
- Unknown (None), mistyped or missing facts mean "rule not satisfied";
  the engine never raises for incomplete facts
- Every pillar starts at 50, is clamped to [0, 100]; the overall score is
  the weighted sum, rounded half-up once, with Decimal arithmetic

Any change to a weight, threshold or rule MUST bump SCORING_VERSION.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, List, Optional, Tuple

from .contracts.exports import BreakdownItem, Pillar, ScoreResult
from .contracts.facts import (
    FactCategory, PageFacts, PdpFacts, StructureFacts, TechnicalFacts
)
from .contracts.versions import DEFAULT_VERSIONS
from .errors import ScoringInputError


SCORING_VERSION = DEFAULT_VERSIONS.scoring

PILLAR_WEIGHTS: Tuple[Tuple[Pillar, Decimal], ...] = (
    (Pillar.CLARITY, Decimal("0.25")),
    (Pillar.FRICTION, Decimal("0.20")),
    (Pillar.TRUST, Decimal("0.15")),
    (Pillar.SOCIAL, Decimal("0.15")),
    (Pillar.MOBILE, Decimal("0.10")),
    (Pillar.PERFORMANCE, Decimal("0.10")),
    (Pillar.SEO, Decimal("0.05")),
)

PILLAR_BASE = 50
PILLAR_MIN = 0
PILLAR_MAX = 100

DESCRIPTION_MIN_LENGTH = 50
LCP_POOR_MS = 2500
BLOCKING_SCRIPTS_MAX = 3
VARIANT_CLICKS_MAX = 3

REVIEW_APPS = ("Loox", "Judge.me", "Yotpo", "Stamped.io", "Okendo", "Rivyo")
PREMIUM_REVIEW_APPS = ("Loox", "Okendo", "Yotpo")


def round_half_up(value: Decimal) -> int:
    """The single rounding rule of the engine."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# =============================================================================
# FACT ACCESSORS (unknown or mistyped -> not satisfied)
# =============================================================================

def _is_true(value) -> bool:
    return value is True


def _is_false(value) -> bool:
    return value is False


def _count(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _text(value) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _item(
    pillar: Pillar,
    delta: int,
    reason: str,
    rule_id: Optional[str] = None,
    fact_ids: Tuple[str, ...] = ()
) -> BreakdownItem:
    return BreakdownItem(
        pillar=pillar, delta=delta, reason=reason,
        rule_id=rule_id, fact_ids=tuple(fact_ids),
    )


# =============================================================================
# RULES PER FACT VARIANT
# =============================================================================

def _pdp_rules(pdp: PdpFacts) -> List[BreakdownItem]:
    items = []

    # Clarity
    if not _is_true(pdp.has_atc_button):
        items.append(_item(
            Pillar.CLARITY, -30, "Add-to-cart button not detected on page load",
            "R.PDP.CTA.MISSING_ATF", ("atc_button",),
        ))
    if not (_text(pdp.price) or _text(pdp.regular_price) or _text(pdp.sale_price)):
        items.append(_item(
            Pillar.CLARITY, -25, "Price not detected on page",
            "R.PDP.PRICE.MISSING_OR_AMBIGUOUS", ("price",),
        ))

    description_length = _count(pdp.description_length)
    if not _is_true(pdp.has_description):
        items.append(_item(
            Pillar.CLARITY, -15, "Description not detected",
            "R.PDP.BENEFITS.MISSING_SCANNABLE_LIST", ("description",),
        ))
    elif description_length is None or description_length < DESCRIPTION_MIN_LENGTH:
        items.append(_item(
            Pillar.CLARITY, -15,
            f"Description too short (<{DESCRIPTION_MIN_LENGTH} characters)",
            "R.PDP.BENEFITS.MISSING_SCANNABLE_LIST", ("description",),
        ))

    atc_count = _count(pdp.atc_button_count)
    if _is_true(pdp.has_atc_button) and atc_count is not None and atc_count >= 1:
        items.append(_item(
            Pillar.CLARITY, 10, "Add-to-cart button present and detected",
            fact_ids=("atc_button",),
        ))
    if _is_true(pdp.has_variant_selector) and pdp.variant_types:
        items.append(_item(
            Pillar.CLARITY, 5, "Variant selector present",
            fact_ids=("variant_selector",),
        ))

    # Friction
    if _is_false(pdp.sticky_atc_mobile):
        items.append(_item(
            Pillar.FRICTION, -15, "Missing sticky add-to-cart on mobile",
            "R.PDP.STICKY_ATC.MISSING_MOBILE", ("sticky_atc_mobile",),
        ))
    clicks = _count(pdp.variant_selection_clicks)
    if clicks is None:
        clicks = len(pdp.variant_types or ())
    if clicks > VARIANT_CLICKS_MAX:
        items.append(_item(
            Pillar.FRICTION, -10,
            f"Variant selection needs more than {VARIANT_CLICKS_MAX} clicks",
            "R.PDP.VARIANTS.CONFUSING_PICKER", ("variant_selection_clicks",),
        ))
    return items


def _structure_rules(structure: StructureFacts) -> List[BreakdownItem]:
    items = []
    h1_count = _count(structure.h1_count)
    image_count = _count(structure.image_count)
    without_alt = _count(structure.images_without_alt)

    # Friction
    if h1_count == 0:
        items.append(_item(
            Pillar.FRICTION, -20, "Missing H1 heading", fact_ids=("h1_count",),
        ))
    if without_alt and image_count and without_alt > 0 and image_count > 0:
        ratio = min(Decimal(1), Decimal(without_alt) / Decimal(image_count))
        penalty = min(-10, round_half_up(Decimal(-20) * ratio))
        items.append(_item(
            Pillar.FRICTION, penalty,
            f"{without_alt} image(s) without alt attribute",
            fact_ids=("images_without_alt", "image_count"),
        ))
    if h1_count is not None and h1_count >= 1 and _text(structure.main_h1_text):
        items.append(_item(Pillar.FRICTION, 5, "Heading structure present"))

    # Trust
    has_shipping = _is_true(structure.has_shipping_info)
    has_returns = _is_true(structure.has_return_policy)
    if not (has_shipping or has_returns):
        items.append(_item(
            Pillar.TRUST, -15, "Shipping and returns information not visible",
            "R.PDP.SHIPPING.MISSING_POLICY_AT_PDP", ("shipping_returns_visibility",),
        ))
    if has_shipping:
        items.append(_item(Pillar.TRUST, 10, "Shipping information present"))
    if has_returns:
        items.append(_item(Pillar.TRUST, 10, "Return policy present"))
    if _is_false(structure.trust_badges_near_atc):
        items.append(_item(
            Pillar.TRUST, -10, "Trust badges missing near add-to-cart",
            "R.PDP.TRUST.MISSING_SIGNALS", ("trust_badges_near_atc",),
        ))

    # Social
    has_reviews = _is_true(structure.has_reviews_section)
    has_social = _is_true(structure.has_social_proof)
    if not (has_reviews or has_social):
        items.append(_item(
            Pillar.SOCIAL, -20, "Social proof missing near the product title",
            "R.PDP.REVIEWS.MISSING_OR_HIDDEN", ("social_proof_presence",),
        ))
    if has_reviews:
        items.append(_item(Pillar.SOCIAL, 15, "Reviews section detected"))
    if has_social:
        items.append(_item(Pillar.SOCIAL, 10, "Social proof detected"))

    # Mobile
    form_count = _count(structure.form_count)
    if form_count is not None and form_count > 0:
        items.append(_item(Pillar.MOBILE, 5, "Structured forms detected"))

    # Performance
    lazy = _count(structure.images_with_lazy_load)
    if lazy is not None and lazy > 0:
        items.append(_item(Pillar.PERFORMANCE, 5, "Lazy-loaded images detected"))

    # SEO
    if h1_count == 1:
        items.append(_item(Pillar.SEO, 10, "Unique H1 present"))
    elif h1_count == 0:
        items.append(_item(Pillar.SEO, -15, "Missing H1"))
    else:
        items.append(_item(Pillar.SEO, -5, "H1 not unique or not detected"))
    return items


def _technical_rules(technical: TechnicalFacts) -> List[BreakdownItem]:
    items = []

    # Friction
    if not _is_true(technical.has_aria_labels):
        items.append(_item(
            Pillar.FRICTION, -10, "ARIA labels not detected", fact_ids=("aria_labels",),
        ))

    # Social
    for app in technical.detected_apps or ():
        if not isinstance(app, str):
            continue
        lowered = app.lower()
        if not any(name.lower() in lowered for name in REVIEW_APPS):
            continue
        items.append(_item(Pillar.SOCIAL, 10, f"Review app detected: {app}"))
        if any(name.lower() in lowered for name in PREMIUM_REVIEW_APPS):
            items.append(_item(
                Pillar.SOCIAL, 5, f"Premium review app detected: {app}",
                fact_ids=("detected_apps",),
            ))

    # Mobile
    if _is_true(technical.has_skip_link):
        items.append(_item(Pillar.MOBILE, 10, "Skip-to-content link present"))
    else:
        items.append(_item(Pillar.MOBILE, -5, "Skip-to-content link missing"))

    # Performance
    lcp_ms = _count(technical.lcp_ms)
    if lcp_ms is not None and lcp_ms > LCP_POOR_MS:
        items.append(_item(
            Pillar.PERFORMANCE, -20, f"LCP {lcp_ms}ms > {LCP_POOR_MS}ms",
            "R.TECH.PERF_LAB.POOR_BUCKET", ("lcp_ms",),
        ))
    blocking = _count(technical.blocking_script_count)
    if blocking is None:
        blocking = _count(technical.external_script_count) or 0
    if blocking > BLOCKING_SCRIPTS_MAX:
        items.append(_item(
            Pillar.PERFORMANCE, -10,
            f"Blocking script count ({blocking}) > {BLOCKING_SCRIPTS_MAX}",
            "R.TECH.PERF_LAB.POOR_BUCKET", ("blocking_script_count",),
        ))
    tracking_penalty = 0
    if _is_true(technical.has_google_analytics):
        tracking_penalty -= 5
    if _is_true(technical.has_facebook_pixel):
        tracking_penalty -= 5
    if _is_true(technical.has_klaviyo):
        tracking_penalty -= 3
    if tracking_penalty:
        items.append(_item(
            Pillar.PERFORMANCE, tracking_penalty,
            "Third-party tracking scripts detected",
        ))

    # SEO
    if _text(technical.lang_attribute):
        items.append(_item(Pillar.SEO, 5, "Lang attribute present"))
    return items


_RULES: Dict[FactCategory, Tuple[type, Callable]] = {
    FactCategory.PDP: (PdpFacts, _pdp_rules),
    FactCategory.STRUCTURE: (StructureFacts, _structure_rules),
    FactCategory.TECHNICAL: (TechnicalFacts, _technical_rules),
}


# =============================================================================
# ENGINE
# =============================================================================

def evaluate_rules(facts: PageFacts) -> Tuple[BreakdownItem, ...]:
    """Apply every rule set, in FactCategory order."""
    breakdown: List[BreakdownItem] = []
    for category in FactCategory:
        variant_type, rules = _RULES[category]
        variant = facts.get(category)
        if not isinstance(variant, variant_type):
            # Missing or mistyped variant: evaluate against "nothing observed"
            variant = variant_type()
        breakdown.extend(rules(variant))
    return tuple(breakdown)


def pillar_scores(breakdown: Tuple[BreakdownItem, ...]) -> Tuple[Tuple[Pillar, int], ...]:
    sums = {pillar: PILLAR_BASE for pillar, _ in PILLAR_WEIGHTS}
    for item in breakdown:
        sums[item.pillar] += item.delta
    return tuple(
        (pillar, max(PILLAR_MIN, min(PILLAR_MAX, sums[pillar])))
        for pillar, _ in PILLAR_WEIGHTS
    )


def weighted_score(scores: Tuple[Tuple[Pillar, int], ...]) -> int:
    weights = dict(PILLAR_WEIGHTS)
    total = sum((Decimal(value) * weights[pillar] for pillar, value in scores), Decimal(0))
    return round_half_up(total)


def _reasoning(breakdown: Tuple[BreakdownItem, ...]) -> str:
    parts = [
        f"[{b.pillar.value}] {'+' if b.delta > 0 else ''}{b.delta}: {b.reason}"
        for b in breakdown if b.delta != 0
    ]
    return "; ".join(parts) if parts else "No deductions or bonuses applied."


def score(facts: PageFacts, scoring_version: str = SCORING_VERSION) -> ScoreResult:
    """
    Compute the page score.

    Raises ScoringInputError only when `facts` is not a PageFacts at all;
    incomplete facts are scored conservatively.
    """
    if not isinstance(facts, PageFacts):
        raise ScoringInputError(
            f"Expected PageFacts, got {type(facts).__name__}"
        )

    breakdown = evaluate_rules(facts)
    scores = pillar_scores(breakdown)
    return ScoreResult(
        score=weighted_score(scores),
        pillar_scores=scores,
        breakdown=breakdown,
        reasoning=_reasoning(breakdown),
        scoring_version=scoring_version,
    )
