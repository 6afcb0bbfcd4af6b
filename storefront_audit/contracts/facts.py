"""
Facts and Capture Artifact Contracts
====================================

Structural facts extracted from a captured product page, and the
artifacts a capture leaves behind.

CONSTRAINTS:
- Facts are observations only: no scores, no recommendations
- Every fact is Optional; None means "not observed", never "false"
- Facts are a CLOSED set of tagged variants, one per FactCategory
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, FrozenSet, Optional, Tuple, Union

from .base import Viewport


class FactCategory(Enum):
    """Closed set of fact categories. Consumers must handle every member."""
    PDP = "pdp"
    STRUCTURE = "structure"
    TECHNICAL = "technical"


# =============================================================================
# FACT VARIANTS
# =============================================================================

@dataclass(frozen=True)
class PdpFacts:
    """Product detail facts: offer, call-to-action, variants, description."""
    category: ClassVar[FactCategory] = FactCategory.PDP

    title: Optional[str] = None
    price: Optional[str] = None
    regular_price: Optional[str] = None
    sale_price: Optional[str] = None
    currency: Optional[str] = None
    has_sale_price: Optional[bool] = None

    has_atc_button: Optional[bool] = None
    atc_text: Optional[str] = None
    atc_button_count: Optional[int] = None
    sticky_atc_mobile: Optional[bool] = None

    has_variant_selector: Optional[bool] = None
    variant_types: Tuple[str, ...] = field(default_factory=tuple)
    variant_selection_clicks: Optional[int] = None

    in_stock: Optional[bool] = None
    has_description: Optional[bool] = None
    description_length: Optional[int] = None


@dataclass(frozen=True)
class StructureFacts:
    """DOM structure facts: headings, images, page sections, forms."""
    category: ClassVar[FactCategory] = FactCategory.STRUCTURE

    h1_count: Optional[int] = None
    main_h1_text: Optional[str] = None
    h2_count: Optional[int] = None
    h3_count: Optional[int] = None

    image_count: Optional[int] = None
    images_without_alt: Optional[int] = None
    images_with_lazy_load: Optional[int] = None

    has_reviews_section: Optional[bool] = None
    has_shipping_info: Optional[bool] = None
    has_return_policy: Optional[bool] = None
    has_social_proof: Optional[bool] = None
    trust_badges_near_atc: Optional[bool] = None

    form_count: Optional[int] = None
    has_newsletter_form: Optional[bool] = None


@dataclass(frozen=True)
class TechnicalFacts:
    """Platform, third-party apps, accessibility and performance hints."""
    category: ClassVar[FactCategory] = FactCategory.TECHNICAL

    is_shopify: Optional[bool] = None
    theme_name: Optional[str] = None
    detected_apps: Tuple[str, ...] = field(default_factory=tuple)

    has_google_analytics: Optional[bool] = None
    has_facebook_pixel: Optional[bool] = None
    has_klaviyo: Optional[bool] = None
    script_count: Optional[int] = None
    external_script_count: Optional[int] = None
    blocking_script_count: Optional[int] = None

    has_skip_link: Optional[bool] = None
    has_aria_labels: Optional[bool] = None
    lang_attribute: Optional[str] = None

    lcp_ms: Optional[int] = None


FactVariant = Union[PdpFacts, StructureFacts, TechnicalFacts]


@dataclass(frozen=True)
class PageFacts:
    """
    All facts observed on one page.

    A category left as None was not collected at all; the scoring engine
    treats every rule over it as not satisfied.
    """
    pdp: Optional[PdpFacts] = None
    structure: Optional[StructureFacts] = None
    technical: Optional[TechnicalFacts] = None

    def get(self, category: FactCategory) -> Optional[FactVariant]:
        if category is FactCategory.PDP:
            return self.pdp
        if category is FactCategory.STRUCTURE:
            return self.structure
        if category is FactCategory.TECHNICAL:
            return self.technical
        raise ValueError(f"Unknown fact category: {category}")

    @property
    def present_categories(self) -> Tuple[FactCategory, ...]:
        return tuple(c for c in FactCategory if self.get(c) is not None)

    @property
    def missing_categories(self) -> Tuple[FactCategory, ...]:
        return tuple(c for c in FactCategory if self.get(c) is None)

    @property
    def is_empty(self) -> bool:
        return not self.present_categories


# =============================================================================
# CAPTURE ARTIFACTS
# =============================================================================

@dataclass(frozen=True)
class ViewportArtifact:
    """References left by the capture of one viewport."""
    viewport: Viewport
    screenshot_ref: Optional[str] = None
    html_ref: Optional[str] = None

    @property
    def has_any(self) -> bool:
        return bool(self.screenshot_ref or self.html_ref)


@dataclass(frozen=True)
class CaptureArtifacts:
    """
    Everything the evidence builder is allowed to look at.

    `captured_at` is an ISO string fixed at capture time, so rebuilding
    evidence from the same artifacts is byte-identical.
    """
    captured_at: str
    viewports: Tuple[ViewportArtifact, ...] = field(default_factory=tuple)
    facts: Optional[PageFacts] = None
    source: str = "page_a"
    facts_version: str = "1.0"

    def viewport(self, name: str) -> Optional[ViewportArtifact]:
        for artifact in self.viewports:
            if artifact.viewport.name == name:
                return artifact
        return None

    @property
    def lcp_ms(self) -> Optional[int]:
        if not isinstance(self.facts, PageFacts) or self.facts.technical is None:
            return None
        return self.facts.technical.lcp_ms

    def evidence_kinds(self) -> FrozenSet[str]:
        """Names of the evidence kinds present, e.g. 'mobile_screenshot'."""
        kinds = set()
        for artifact in self.viewports:
            if artifact.screenshot_ref:
                kinds.add(f"{artifact.viewport.name}_screenshot")
            if artifact.html_ref:
                kinds.add(f"{artifact.viewport.name}_html")
        if isinstance(self.facts, PageFacts) and not self.facts.is_empty:
            kinds.add("facts")
        return frozenset(kinds)

    @property
    def screenshot_count(self) -> int:
        return sum(1 for a in self.viewports if a.screenshot_ref)
