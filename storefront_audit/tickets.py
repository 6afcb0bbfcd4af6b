"""
Rules Ticket Engine
===================

Deterministic tickets from facts, score and evidence, plus the ordering
and Top-Actions guardrails every ticket list goes through.

GUARANTEES:
- Same facts + score + evidence + locale -> identical ticket list
- Every ticket references at least one evidence of the same run
- No evidence -> no tickets (never a placeholder evidence id)
- Ordering is total: ties end on ticket_id
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .contracts.base import AuditMode
from .contracts.exports import (
    Evidence, OwnerHint, Pillar, ScoreResult, Ticket, TicketCategory,
    TicketConfidence, TicketEffort, TicketImpact, TicketRisk
)
from .contracts.facts import PageFacts, PdpFacts, StructureFacts, TechnicalFacts
from .evidence import first_screenshot_ref


MAX_TICKETS = 5
MAX_LARGE_EFFORT = 1
HOW_TO_MIN_STEPS = 3
HOW_TO_MAX_STEPS = 7

ABOVE_FOLD_DESCRIPTION_CHARS = 800
DESCRIPTION_MIN_CHARS = 100
LCP_TARGET_MS = 2500
VARIANT_TYPES_MAX = 3

RULES_NOTE = "Rules Ticket Engine"


# =============================================================================
# LOCALIZED CONTENT
# =============================================================================

CONTENT: Dict[str, Dict[str, Dict]] = {
    "fr": {
        "cta_missing": {
            "title": "CTA Ajouter au panier absent ou non détecté",
            "why": "Sans bouton d'achat visible, la conversion est impossible. Bloqueur majeur.",
            "how_to": (
                "Ajouter un bouton ATC visible au-dessus de la ligne de flottaison",
                "Vérifier que le DOM expose l'élément (aria-label, data-testid)",
                "Tester sur mobile et desktop",
            ),
            "validation": ("Bouton ATC visible sans scroll", "Clic fonctionnel"),
        },
        "images_alt": {
            "title": "Images produit sans attribut alt",
            "why": "Détecté {images_without_alt} image(s) sans alt. SEO et accessibilité impactés.",
            "how_to": (
                "Ajouter des attributs alt descriptifs à toutes les images",
                "Prioriser la galerie produit",
                "Éviter alt vide ou générique",
            ),
            "validation": (
                "Toutes les images ont un alt pertinent",
                "Vérification Lighthouse Accessibility",
            ),
        },
        "above_fold": {
            "title": "Contenu excessif au-dessus de la ligne de flottaison",
            "why": (
                "Description très longue ({description_length} caractères). "
                "Le CTA risque d'être hors écran sur mobile."
            ),
            "how_to": (
                "Réduire le bloc texte initial à 300-500 caractères",
                "Déplacer le détail en accordéon ou onglets",
                "Mettre le CTA au-dessus ou juste après le prix",
            ),
            "validation": (
                "CTA visible sans scroll sur mobile 390px",
                "Temps au premier CTA < 2s",
            ),
        },
        "trust_badges": {
            "title": "Signaux de confiance absents (livraison, retours)",
            "why": (
                "Livraison et politique de retours non détectés. "
                "Augmente l'abandon et les questions support."
            ),
            "how_to": (
                "Afficher délai et frais de livraison près du CTA",
                "Lien vers politique de retours",
                "Ajouter garanties si pertinent",
            ),
            "validation": ("Info livraison visible", "Accès rapide à la politique retours"),
        },
        "reviews": {
            "title": "Section avis clients absente",
            "why": (
                "Aucune preuve sociale détectée. Les avis augmentent la confiance "
                "et le taux de conversion."
            ),
            "how_to": (
                "Installer une app avis (Loox, Judge.me, Yotpo)",
                "Intégrer les avis au-dessus de la ligne de flottaison si possible",
                "Afficher la note moyenne et le nombre d'avis",
            ),
            "validation": ("Section avis visible sur PDP", "Note et compte affichés"),
        },
        "performance": {
            "title": "Performance LCP à améliorer",
            "why": (
                "LCP mesuré à {lcp_ms}ms (objectif <2500ms). "
                "Impact sur bounce et Core Web Vitals."
            ),
            "why_fallback": "Déductions performance détectées dans le scoring.",
            "how_to": (
                "Optimiser les images (WebP, lazy-load)",
                "Différer les scripts tiers (chat, analytics)",
                "Prioriser le contenu above-the-fold",
            ),
            "validation": ("LCP < 2500ms", "Lighthouse Performance > 80"),
        },
        "description": {
            "title": "Description produit insuffisante ou peu structurée",
            "why": "Description courte ou absente. Les acheteurs ont besoin d'infos pour trancher.",
            "how_to": (
                "Rédiger au moins 200 caractères de bénéfices clés",
                "Utiliser des sous-titres H2/H3",
                "Inclure dimensions, matériaux, garanties",
            ),
            "validation": ("Description > 200 caractères", "Hiérarchie H2/H3 présente"),
        },
        "variants": {
            "title": "Sélection de variantes complexe",
            "why": (
                "Plusieurs types de variantes ({variant_types}). "
                "Risque de friction sur mobile."
            ),
            "how_to": (
                "Limiter les options visibles par défaut",
                "Grouper taille/couleur de façon lisible",
                "Tester le parcours sur mobile",
            ),
            "validation": (
                "Moins de 4 clics pour sélectionner variante",
                "Interface lisible sur 390px",
            ),
        },
    },
    "en": {
        "cta_missing": {
            "title": "Add to Cart button missing or not detected",
            "why": "Without a visible purchase button, conversion is impossible. Major blocker.",
            "how_to": (
                "Add a visible ATC button above the fold",
                "Ensure the DOM exposes the element (aria-label, data-testid)",
                "Test on mobile and desktop",
            ),
            "validation": ("ATC button visible without scroll", "Click works"),
        },
        "images_alt": {
            "title": "Product images missing alt attribute",
            "why": "Detected {images_without_alt} image(s) without alt. SEO and accessibility impacted.",
            "how_to": (
                "Add descriptive alt attributes to all images",
                "Prioritize product gallery",
                "Avoid empty or generic alt",
            ),
            "validation": ("All images have relevant alt", "Lighthouse Accessibility check"),
        },
        "above_fold": {
            "title": "Excessive content above the fold",
            "why": (
                "Very long description ({description_length} chars). "
                "CTA may be off-screen on mobile."
            ),
            "how_to": (
                "Reduce initial text block to 300-500 characters",
                "Move detail to accordion or tabs",
                "Place CTA above or right after price",
            ),
            "validation": ("CTA visible without scroll on 390px mobile", "Time to first CTA < 2s"),
        },
        "trust_badges": {
            "title": "Trust signals missing (shipping, returns)",
            "why": "Shipping and return policy not detected. Increases abandonment and support questions.",
            "how_to": (
                "Display delivery time and fees near CTA",
                "Link to return policy",
                "Add guarantees if relevant",
            ),
            "validation": ("Shipping info visible", "Quick access to return policy"),
        },
        "reviews": {
            "title": "Customer reviews section missing",
            "why": "No social proof detected. Reviews increase trust and conversion rate.",
            "how_to": (
                "Install a reviews app (Loox, Judge.me, Yotpo)",
                "Integrate reviews above the fold if possible",
                "Display average rating and review count",
            ),
            "validation": ("Reviews section visible on PDP", "Rating and count displayed"),
        },
        "performance": {
            "title": "LCP performance needs improvement",
            "why": (
                "LCP measured at {lcp_ms}ms (target <2500ms). "
                "Impact on bounce and Core Web Vitals."
            ),
            "why_fallback": "Performance deductions detected in scoring.",
            "how_to": (
                "Optimize images (WebP, lazy-load)",
                "Defer third-party scripts (chat, analytics)",
                "Prioritize above-the-fold content",
            ),
            "validation": ("LCP < 2500ms", "Lighthouse Performance > 80"),
        },
        "description": {
            "title": "Product description insufficient or poorly structured",
            "why": "Short or missing description. Buyers need info to decide.",
            "how_to": (
                "Write at least 200 characters of key benefits",
                "Use H2/H3 subheadings",
                "Include dimensions, materials, warranties",
            ),
            "validation": ("Description > 200 characters", "H2/H3 hierarchy present"),
        },
        "variants": {
            "title": "Variant selection too complex",
            "why": "Multiple variant types ({variant_types}). Friction risk on mobile.",
            "how_to": (
                "Limit visible options by default",
                "Group size/color in a readable way",
                "Test flow on mobile",
            ),
            "validation": ("Fewer than 4 clicks to select variant", "Interface readable on 390px"),
        },
    },
}


# =============================================================================
# RULE DEFINITIONS
# =============================================================================

@dataclass(frozen=True)
class RuleInput:
    pdp: PdpFacts
    structure: StructureFacts
    technical: TechnicalFacts
    score: Optional[ScoreResult]
    locale: str

    @classmethod
    def from_facts(
        cls,
        facts: PageFacts,
        score: Optional[ScoreResult],
        locale: str
    ) -> RuleInput:
        return cls(
            pdp=facts.pdp if isinstance(facts.pdp, PdpFacts) else PdpFacts(),
            structure=(
                facts.structure if isinstance(facts.structure, StructureFacts)
                else StructureFacts()
            ),
            technical=(
                facts.technical if isinstance(facts.technical, TechnicalFacts)
                else TechnicalFacts()
            ),
            score=score,
            locale=locale,
        )

    def context(self) -> Dict[str, object]:
        return {
            "images_without_alt": _int(self.structure.images_without_alt),
            "description_length": _int(self.pdp.description_length),
            "lcp_ms": _int(self.technical.lcp_ms),
            "variant_types": ", ".join(self.pdp.variant_types or ()) or "multiple",
        }


def _int(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


@dataclass(frozen=True)
class TicketRule:
    """One deterministic ticket rule."""
    id: str
    category: TicketCategory
    impact: TicketImpact
    effort: TicketEffort
    rule_id: str
    owner: OwnerHint
    matches: Callable[[RuleInput], bool]


def _performance_matches(i: RuleInput) -> bool:
    lcp = _int(i.technical.lcp_ms)
    deductions = i.score.deductions(Pillar.PERFORMANCE) if i.score else ()
    return lcp > LCP_TARGET_MS or bool(deductions)


RULES: Tuple[TicketRule, ...] = (
    TicketRule(
        "cta_missing", TicketCategory.OFFER_CLARITY, TicketImpact.HIGH,
        TicketEffort.SMALL, "R.PDP.CTA.MISSING_ATF", OwnerHint.DEV,
        lambda i: i.pdp.has_atc_button is not True,
    ),
    TicketRule(
        "images_alt", TicketCategory.ACCESSIBILITY, TicketImpact.MEDIUM,
        TicketEffort.SMALL, "R.PDP.ACCESSIBILITY.MISSING_ALT", OwnerHint.CONTENT,
        lambda i: _int(i.structure.images_without_alt) > 0,
    ),
    TicketRule(
        "above_fold", TicketCategory.UX, TicketImpact.MEDIUM,
        TicketEffort.MEDIUM, "R.PDP.STICKY_ATC.MISSING_MOBILE", OwnerHint.DESIGN,
        lambda i: (
            i.pdp.has_atc_button is True
            and _int(i.pdp.description_length) > ABOVE_FOLD_DESCRIPTION_CHARS
        ),
    ),
    TicketRule(
        "trust_badges", TicketCategory.TRUST, TicketImpact.HIGH,
        TicketEffort.SMALL, "R.PDP.TRUST.MISSING_SIGNALS", OwnerHint.CONTENT,
        lambda i: (
            i.structure.has_shipping_info is not True
            and i.structure.has_return_policy is not True
        ),
    ),
    TicketRule(
        "reviews", TicketCategory.TRUST, TicketImpact.HIGH,
        TicketEffort.MEDIUM, "R.PDP.REVIEWS.MISSING", OwnerHint.OPS,
        lambda i: i.structure.has_reviews_section is not True,
    ),
    TicketRule(
        "performance", TicketCategory.PERFORMANCE, TicketImpact.MEDIUM,
        TicketEffort.MEDIUM, "R.TECH.PERF_LAB.POOR_BUCKET", OwnerHint.DEV,
        _performance_matches,
    ),
    TicketRule(
        "description", TicketCategory.OFFER_CLARITY, TicketImpact.MEDIUM,
        TicketEffort.SMALL, "R.PDP.BENEFITS.MISSING_SCANNABLE_LIST", OwnerHint.CONTENT,
        lambda i: (
            i.pdp.has_description is not True
            or _int(i.pdp.description_length) < DESCRIPTION_MIN_CHARS
        ),
    ),
    TicketRule(
        "variants", TicketCategory.UX, TicketImpact.MEDIUM,
        TicketEffort.MEDIUM, "R.PDP.VARIANTS.COMPLEXITY", OwnerHint.DEV,
        lambda i: (
            i.pdp.has_variant_selector is True
            and len(i.pdp.variant_types or ()) > VARIANT_TYPES_MAX
        ),
    ),
)


def _content(rule: TicketRule, data: RuleInput) -> Dict[str, object]:
    table = CONTENT.get(data.locale, CONTENT["en"])[rule.id]
    context = data.context()
    why = table["why"]
    if "why_fallback" in table and not context["lcp_ms"]:
        why = table["why_fallback"]
    return {
        "title": table["title"],
        "why": why.format(**context),
        "how_to": tuple(table["how_to"]),
        "validation": tuple(table["validation"]),
    }


def build_rule_ticket(rule: TicketRule, data: RuleInput, evidence_ref: str) -> Ticket:
    content = _content(rule, data)
    return Ticket(
        ticket_id=f"T_solo_rules_{rule.id}_pdp_01",
        mode=AuditMode.SOLO,
        title=content["title"],
        impact=rule.impact,
        effort=rule.effort,
        risk=TicketRisk.LOW,
        confidence=TicketConfidence.HIGH,
        category=rule.category,
        why=content["why"],
        evidence_refs=(evidence_ref,),
        how_to=content["how_to"],
        validation=content["validation"],
        quick_win=rule.effort is TicketEffort.SMALL and rule.impact is TicketImpact.HIGH,
        owner_hint=rule.owner,
        notes=RULES_NOTE,
        rule_id=rule.rule_id,
    )


def generate_rule_tickets(
    facts: PageFacts,
    score: Optional[ScoreResult],
    evidences: Tuple[Evidence, ...],
    locale: str = "fr",
    max_tickets: int = MAX_TICKETS,
    max_large_effort: int = MAX_LARGE_EFFORT
) -> Tuple[Ticket, ...]:
    """
    Deterministic tickets for one run.

    Every ticket points at the first screenshot evidence (else the first
    evidence). Without evidence nothing can be referenced: returns ().
    """
    evidence_ref = first_screenshot_ref(evidences)
    if evidence_ref is None:
        return ()

    data = RuleInput.from_facts(facts, score, locale)
    tickets = []
    for rule in RULES:
        if not rule.matches(data):
            continue
        tickets.append(build_rule_ticket(rule, data, evidence_ref))

    ordered = sort_tickets_stable(tickets)
    return tuple(filter_top_actions(ordered, max_large_effort)[:max_tickets])


# =============================================================================
# ORDERING & GUARDRAILS
# =============================================================================

_IMPACT = {TicketImpact.HIGH: 3, TicketImpact.MEDIUM: 2, TicketImpact.LOW: 1}
_CONFIDENCE = {TicketConfidence.HIGH: 3, TicketConfidence.MEDIUM: 2, TicketConfidence.LOW: 1}
_EFFORT = {TicketEffort.SMALL: 1, TicketEffort.MEDIUM: 2, TicketEffort.LARGE: 3}
_RISK = {TicketRisk.LOW: 1, TicketRisk.MEDIUM: 2, TicketRisk.HIGH: 3}


def priority_score(ticket: Ticket) -> int:
    return (
        _IMPACT[ticket.impact] * 3
        + _CONFIDENCE[ticket.confidence] * 2
        - _EFFORT[ticket.effort] * 2
        - _RISK[ticket.risk]
    )


def _sort_key(ticket: Ticket):
    return (
        -priority_score(ticket),
        -_IMPACT[ticket.impact],
        -_CONFIDENCE[ticket.confidence],
        _EFFORT[ticket.effort],
        _RISK[ticket.risk],
        ticket.ticket_id,
    )


def sort_tickets_stable(tickets: Iterable[Ticket]) -> List[Ticket]:
    """Priority desc, impact desc, confidence desc, effort asc, risk asc, id."""
    return sorted(tickets, key=_sort_key)


def filter_top_actions(
    tickets: Iterable[Ticket],
    max_large_effort: int = MAX_LARGE_EFFORT
) -> List[Ticket]:
    """Drop low-confidence tickets and cap large-effort ones, keeping order."""
    kept = []
    large = 0
    for ticket in tickets:
        if ticket.confidence is TicketConfidence.LOW:
            continue
        if ticket.effort is TicketEffort.LARGE:
            if large >= max_large_effort:
                continue
            large += 1
        kept.append(ticket)
    return kept


def extract_quick_wins(tickets: Iterable[Ticket]) -> List[Ticket]:
    return [
        t for t in tickets
        if t.quick_win
        and t.effort is TicketEffort.SMALL
        and t.confidence in (TicketConfidence.HIGH, TicketConfidence.MEDIUM)
    ]


# =============================================================================
# VALIDATION & MERGE
# =============================================================================

def validate_ticket(ticket: Ticket, evidence_ids: FrozenSet[str]) -> List[str]:
    """Return the list of problems; empty means the ticket is valid."""
    problems = []
    if not isinstance(ticket.title, str) or not ticket.title.strip():
        problems.append("empty title")
    if not isinstance(ticket.why, str) or not ticket.why.strip():
        problems.append("empty why")
    if not ticket.evidence_refs:
        problems.append("no evidence reference")
    unknown = [ref for ref in ticket.evidence_refs if ref not in evidence_ids]
    if unknown:
        problems.append(f"unknown evidence refs: {', '.join(unknown)}")
    if not HOW_TO_MIN_STEPS <= len(ticket.how_to) <= HOW_TO_MAX_STEPS:
        problems.append(
            f"how_to must have {HOW_TO_MIN_STEPS}-{HOW_TO_MAX_STEPS} steps, "
            f"got {len(ticket.how_to)}"
        )
    if not ticket.validation:
        problems.append("no validation step")
    return problems


@dataclass(frozen=True)
class MergeResult:
    tickets: Tuple[Ticket, ...]
    rejected: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)   # (ticket_id, reason)


def merge_tickets(
    rule_tickets: Iterable[Ticket],
    synthesized: Iterable[Ticket],
    evidences: Tuple[Evidence, ...],
    max_tickets: int = MAX_TICKETS,
    max_large_effort: int = MAX_LARGE_EFFORT
) -> MergeResult:
    """
    Combine rules tickets with synthesized ones.

    Rules tickets win on duplicate ids. Synthesized tickets that fail
    validation are rejected and reported; the merged list is sorted,
    guarded and capped.
    """
    evidence_ids = frozenset(e.evidence_id for e in evidences)
    merged: Dict[str, Ticket] = {}
    rejected = []

    for ticket in rule_tickets:
        merged.setdefault(ticket.ticket_id, ticket)

    for ticket in synthesized:
        if ticket.ticket_id in merged:
            continue
        problems = validate_ticket(ticket, evidence_ids)
        if problems:
            rejected.append((ticket.ticket_id, "; ".join(problems)))
            continue
        merged[ticket.ticket_id] = ticket

    ordered = filter_top_actions(sort_tickets_stable(merged.values()), max_large_effort)
    return MergeResult(tickets=tuple(ordered[:max_tickets]), rejected=tuple(rejected))


# =============================================================================
# SUMMARY
# =============================================================================

_SUMMARY = {
    "fr": "Score global {score}/100. Piliers les plus faibles : {weakest}. {count} action(s) prioritaire(s).",
    "en": "Overall score {score}/100. Weakest pillars: {weakest}. {count} priority action(s).",
}


def fallback_summary(
    score: Optional[ScoreResult],
    tickets: Tuple[Ticket, ...],
    locale: str = "fr"
) -> str:
    """Deterministic executive summary used when no synthesis is available."""
    if score is None:
        return ""
    order = [p for p in Pillar]
    weakest = sorted(score.pillar_scores, key=lambda item: (item[1], order.index(item[0])))[:2]
    template = _SUMMARY.get(locale, _SUMMARY["en"])
    return template.format(
        score=score.score,
        weakest=", ".join(f"{p.value} ({v})" for p, v in weakest),
        count=len(tickets),
    )
