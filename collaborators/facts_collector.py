"""
Facts Collector

Extracts structural PageFacts from raw product-page HTML.

PRINCIPLES:
===========
1. Observations only - no scoring, no recommendations
2. A fact that HTML alone cannot reveal stays None
   (sticky mobile CTA, variant clicks, LCP need a real browser)
3. Detection order is fixed, so the same HTML gives the same facts
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Tuple
from html.parser import HTMLParser
import re

from storefront_audit.contracts.facts import (
    PageFacts, PdpFacts, StructureFacts, TechnicalFacts
)


VOID_TAGS = frozenset({
    'area', 'base', 'br', 'col', 'embed', 'hr', 'img', 'input',
    'link', 'meta', 'source', 'track', 'wbr',
})

PRICE_PATTERN = re.compile(r'[\d.,]+\s*[€$£¥]|[€$£¥]\s*[\d.,]+')
CURRENCY_PATTERN = re.compile(r'[€$£¥]')

SHIPPING_PATTERNS = (
    re.compile(r'free shipping', re.I),
    re.compile(r'livraison gratuite', re.I),
    re.compile(r'shipping', re.I),
    re.compile(r'delivery', re.I),
    re.compile(r'livraison', re.I),
)

RETURN_PATTERNS = (
    re.compile(r'return policy', re.I),
    re.compile(r'returns', re.I),
    re.compile(r'politique de retour', re.I),
    re.compile(r'retours', re.I),
    re.compile(r'satisfaction guaranteed', re.I),
)

SOCIAL_PROOF_PATTERNS = (
    re.compile(r'\d+ people (bought|purchased|viewing)', re.I),
    re.compile(r'\d+ (customers|buyers)', re.I),
    re.compile(r'\d+ (personnes|clients)', re.I),
    re.compile(r'trending', re.I),
    re.compile(r'bestseller', re.I),
    re.compile(r'hot item', re.I),
)

OUT_OF_STOCK_PATTERNS = (
    re.compile(r'sold out', re.I),
    re.compile(r'out of stock', re.I),
    re.compile(r'épuisé', re.I),
    re.compile(r'indisponible', re.I),
)

TRUST_PATTERNS = (
    re.compile(r'paiement s[ée]curis[ée]', re.I),
    re.compile(r'secure (checkout|payment)', re.I),
    re.compile(r'garantie', re.I),
    re.compile(r'guarantee', re.I),
    re.compile(r'trust-badge', re.I),
)

THEME_PATTERNS = (
    re.compile(r'theme["\']\s*:\s*["\']([^"\']+)', re.I),
    re.compile(r'shopify-theme-([a-z0-9-]+)', re.I),
    re.compile(r'"theme_name"\s*:\s*"([^"]+)"', re.I),
)

POPULAR_THEMES = ('Dawn', 'Debut', 'Brooklyn', 'Narrative', 'Venture', 'Simple')


@dataclass(frozen=True)
class AppSignature:
    """A third-party app recognised by patterns in the page source."""
    name: str
    patterns: Tuple[Pattern, ...] = field(default_factory=tuple)

    def matches(self, html: str) -> bool:
        return any(p.search(html) for p in self.patterns)


def _app(name: str, *patterns: str) -> AppSignature:
    return AppSignature(name, tuple(re.compile(p, re.I) for p in patterns))


APP_SIGNATURES = (
    # Reviews
    _app('Loox', r'loox\.io', r'loox-reviews', r'looxapp'),
    _app('Judge.me', r'judge\.me', r'judgeme'),
    _app('Yotpo', r'yotpo\.com', r'yotpo-widget'),
    _app('Stamped.io', r'stamped\.io', r'stampedapp'),
    _app('Okendo', r'okendo\.io', r'okendoreviews'),
    _app('Rivyo', r'rivyo'),
    # Marketing
    _app('Klaviyo', r'klaviyo\.com', r'klaviyo-onsite'),
    _app('Privy', r'privy\.com', r'widget\.privy'),
    _app('Justuno', r'justuno\.com', r'jst-widget'),
    _app('Omnisend', r'omnisend\.com'),
    _app('Attentive', r'attentive\.com', r'attentivemobile'),
    _app('Postscript', r'postscript\.io'),
    # Support
    _app('Gorgias', r'gorgias\.com', r'gorgias-chat'),
    _app('Tidio', r'tidio\.com', r'tidiochat'),
    _app('Zendesk', r'zendesk\.com', r'zopim'),
    _app('Re:amaze', r'reamaze\.com'),
    _app('Intercom', r'intercom\.io', r'intercom-widget'),
    # Subscriptions and loyalty
    _app('ReCharge', r'rechargepayments\.com', r'recharge\.com', r'rechargeassets'),
    _app('Bold Subscriptions', r'bold.*subscription', r'boldapps.*subscription'),
    _app('Appstle', r'appstle'),
    _app('Smile.io', r'smile\.io', r'smile-ui'),
    _app('LoyaltyLion', r'loyaltylion\.com'),
    _app('Growave', r'growave'),
    _app('ReferralCandy', r'referralcandy\.com'),
    # Analytics
    _app('Hotjar', r'hotjar\.com'),
    _app('Lucky Orange', r'luckyorange\.com'),
    _app('Triple Whale', r'triplewhale'),
    # Page builders and search
    _app('Bold', r'boldapps\.net', r'bold-[\w.-]*\.js'),
    _app('Shogun', r'getshogun\.com'),
    _app('PageFly', r'pagefly\.io'),
    _app('Searchanise', r'searchanise\.com'),
    _app('Algolia', r'algolia\.net', r'algoliainsights'),
)


def _classes(attrs: Dict[str, str]) -> List[str]:
    return (attrs.get('class') or '').split()


def _has_class(attrs: Dict[str, str], *names: str) -> bool:
    classes = _classes(attrs)
    return any(name in classes for name in names)


def _clean(parts: List[str]) -> str:
    return re.sub(r'\s+', ' ', ''.join(parts)).strip()


# =============================================================================
# PARSER
# =============================================================================

class FactsCollector(HTMLParser):
    """
    Single-pass HTML walker.

    Elements of interest open a "capture" that receives every text node
    until the element closes; counters are updated on start tags.
    """

    SKIP_TEXT = {'script', 'style', 'noscript', 'template'}

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.reset()
        self._stack: List[str] = []
        self._captures: List[Tuple[int, str, List[str]]] = []
        self.texts: Dict[str, List[str]] = {}
        self.visible: List[str] = []
        self._skip_depth = 0

        self.lang: Optional[str] = None
        self.in_head = False
        self.h_counts = {'h1': 0, 'h2': 0, 'h3': 0}
        self.image_count = 0
        self.images_without_alt = 0
        self.images_lazy = 0
        self.form_count = 0
        self.has_newsletter_form = False
        self.atc_count = 0
        self.has_sale_price = False
        self.script_count = 0
        self.external_scripts = 0
        self.blocking_scripts = 0
        self.aria_label_count = 0
        self.has_skip_link = False
        self.review_class_count = 0
        self.has_review_id = False
        self.has_reviews_block = False
        self.has_shopify_marker = False
        self.variant_inputs: List[Dict[str, str]] = []
        self._in_cart_form = 0

    # ------------------------------------------------------------------
    # Captures
    # ------------------------------------------------------------------

    def _open_capture(self, role: str):
        self._captures.append((len(self._stack), role, []))

    def _close_captures(self, depth: int):
        while self._captures and self._captures[-1][0] >= depth:
            _, role, parts = self._captures.pop()
            self.texts.setdefault(role, []).append(_clean(parts))

    def first_text(self, role: str) -> Optional[str]:
        for text in self.texts.get(role, []):
            if text:
                return text
        return None

    # ------------------------------------------------------------------
    # HTMLParser hooks
    # ------------------------------------------------------------------

    def handle_starttag(self, tag, attrs):
        attrs = {k: (v if v is not None else '') for k, v in attrs}
        self._observe(tag, attrs)
        if tag in VOID_TAGS:
            return
        self._stack.append(tag)
        if tag in self.SKIP_TEXT:
            self._skip_depth += 1
        for role in self._roles(tag, attrs):
            self._open_capture(role)
        if tag == 'form' and '/cart/add' in attrs.get('action', ''):
            self._in_cart_form += 1

    def handle_startendtag(self, tag, attrs):
        attrs = {k: (v if v is not None else '') for k, v in attrs}
        self._observe(tag, attrs)

    def handle_endtag(self, tag):
        if tag in VOID_TAGS or tag not in self._stack:
            return
        while self._stack:
            open_tag = self._stack.pop()
            if open_tag in self.SKIP_TEXT:
                self._skip_depth = max(0, self._skip_depth - 1)
            if open_tag == 'form' and self._in_cart_form:
                self._in_cart_form -= 1
            if open_tag == 'head':
                self.in_head = False
            self._close_captures(len(self._stack) + 1)
            if open_tag == tag:
                break

    def close(self):
        super().close()
        self._stack.clear()
        self._close_captures(0)

    def handle_data(self, data):
        if self._skip_depth:
            return
        self.visible.append(data)
        for _, _, parts in self._captures:
            parts.append(data)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def _roles(self, tag: str, attrs: Dict[str, str]) -> List[str]:
        roles = []
        if tag in self.h_counts:
            self.h_counts[tag] += 1
            roles.append(tag)
        if tag == 'title':
            roles.append('title')
        if tag == 'label' and attrs.get('for'):
            roles.append(f"label:{attrs['for']}")
        if tag == 'legend':
            roles.append('legend')
        if 'data-price' in attrs or 'data-product-price' in attrs or _has_class(
            attrs, 'price-item', 'product__price', 'product-price', 'price__current'
        ) or attrs.get('itemprop') == 'price':
            roles.append('price')
        if _has_class(attrs, 'price--on-sale', 'price__sale',
                      'product__price--sale', 'price-item--sale'):
            self.has_sale_price = True
            roles.append('sale_price')
        if tag in ('s', 'del') or _has_class(
            attrs, 'price--regular', 'price__regular',
            'product__price--regular', 'price-item--regular'
        ):
            roles.append('regular_price')
        if self._is_atc(tag, attrs):
            self.atc_count += 1
            roles.append('atc')
        if _has_class(attrs, 'product__description', 'product-description',
                      'product-single__description') or attrs.get('itemprop') == 'description':
            roles.append('description')
        if self._in_cart_form or _has_class(attrs, 'product-form'):
            roles.append('near_atc')
        return roles

    def _is_atc(self, tag: str, attrs: Dict[str, str]) -> bool:
        if 'data-add-to-cart' in attrs:
            return True
        if tag != 'button':
            return False
        if attrs.get('name') == 'add':
            return True
        if _has_class(attrs, 'product-form__submit', 'btn--add-to-cart'):
            return True
        return bool(self._in_cart_form) and attrs.get('type') == 'submit'

    def _observe(self, tag: str, attrs: Dict[str, str]):
        if 'aria-label' in attrs:
            self.aria_label_count += 1
        if 'data-shopify' in attrs:
            self.has_shopify_marker = True
        class_attr = attrs.get('class', '')
        if 'review' in class_attr.lower():
            self.review_class_count += 1
        if 'review' in attrs.get('id', '').lower():
            self.has_review_id = True
        if _has_class(attrs, 'product-reviews'):
            self.has_reviews_block = True

        if tag == 'html':
            self.lang = attrs.get('lang') or None
        elif tag == 'head':
            self.in_head = True
        elif tag == 'body':
            self.in_head = False
        elif tag == 'img':
            self.image_count += 1
            if not attrs.get('alt', '').strip():
                self.images_without_alt += 1
            if attrs.get('loading') == 'lazy' or attrs.get('data-src'):
                self.images_lazy += 1
        elif tag == 'form':
            self.form_count += 1
            if 'newsletter' in attrs.get('action', ''):
                self.has_newsletter_form = True
        elif tag == 'input':
            if attrs.get('type') == 'email' and 'email' in attrs.get('placeholder', '').lower():
                self.has_newsletter_form = True
        elif tag == 'script':
            self.script_count += 1
            src = attrs.get('src')
            if src:
                self.external_scripts += 1
                deferred = ('async' in attrs or 'defer' in attrs
                            or attrs.get('type') == 'module')
                if self.in_head and not deferred:
                    self.blocking_scripts += 1
        elif tag == 'a':
            if attrs.get('href') in ('#main', '#content') or _has_class(attrs, 'skip-link'):
                self.has_skip_link = True

        if tag == 'select' and 'option' in attrs.get('name', ''):
            self.variant_inputs.append(attrs)
        elif _has_class(attrs, 'product-form__input', 'variant-input') or 'data-variant-input' in attrs:
            self.variant_inputs.append(attrs)


# =============================================================================
# FACTS
# =============================================================================

def _any_match(patterns, text: str) -> bool:
    return any(p.search(text) for p in patterns)


def _price(parser: FactsCollector) -> Tuple[Optional[str], Optional[str]]:
    for text in parser.texts.get('price', []):
        if text and PRICE_PATTERN.search(text):
            currency = CURRENCY_PATTERN.search(text)
            return text, currency.group(0) if currency else None
    return None, None


def _variant_types(parser: FactsCollector) -> Tuple[str, ...]:
    legends = [t for t in parser.texts.get('legend', []) if t]
    types: List[str] = []
    for index, attrs in enumerate(parser.variant_inputs):
        label = parser.first_text(f"label:{attrs.get('id', '')}") if attrs.get('id') else None
        if not label:
            label = attrs.get('aria-label') or None
        if not label and attrs.get('name'):
            label = parser.first_text(f"label:{attrs['name']}")
        if not label and index < len(legends):
            label = legends[index]
        if label and label not in types:
            types.append(label)
    return tuple(types)


def _theme_name(html: str) -> Optional[str]:
    for pattern in THEME_PATTERNS:
        match = pattern.search(html)
        if match:
            return match.group(1)
    for name in POPULAR_THEMES:
        if re.search(name, html, re.I):
            return name
    return None


def collect_facts(html: str) -> PageFacts:
    """Parse one HTML document into PageFacts."""
    parser = FactsCollector()
    parser.feed(html)
    parser.close()

    body_text = ' '.join(parser.visible)
    price, currency = _price(parser)
    description = parser.first_text('description') or ''
    has_description = len(description) > 50
    out_of_stock = _any_match(OUT_OF_STOCK_PATTERNS, body_text)
    has_atc = parser.atc_count > 0

    if out_of_stock:
        in_stock: Optional[bool] = False
    elif has_atc:
        in_stock = True
    else:
        in_stock = None

    pdp = PdpFacts(
        title=parser.first_text('h1') or parser.first_text('title'),
        price=price,
        regular_price=parser.first_text('regular_price') if parser.has_sale_price else None,
        sale_price=parser.first_text('sale_price'),
        currency=currency,
        has_sale_price=parser.has_sale_price,
        has_atc_button=has_atc,
        atc_text=parser.first_text('atc'),
        atc_button_count=parser.atc_count,
        has_variant_selector=bool(parser.variant_inputs),
        variant_types=_variant_types(parser),
        in_stock=in_stock,
        has_description=has_description,
        description_length=len(description) if has_description else 0,
    )

    near_atc = ' '.join(parser.texts.get('near_atc', []))
    structure = StructureFacts(
        h1_count=parser.h_counts["h1"],
        main_h1_text=parser.first_text('h1'),
        h2_count=parser.h_counts["h2"],
        h3_count=parser.h_counts["h3"],
        image_count=parser.image_count,
        images_without_alt=parser.images_without_alt,
        images_with_lazy_load=parser.images_lazy,
        has_reviews_section=(parser.has_reviews_block or parser.has_review_id
                             or parser.review_class_count > 5),
        has_shipping_info=_any_match(SHIPPING_PATTERNS, body_text),
        has_return_policy=_any_match(RETURN_PATTERNS, body_text),
        has_social_proof=_any_match(SOCIAL_PROOF_PATTERNS, body_text),
        trust_badges_near_atc=_any_match(TRUST_PATTERNS, near_atc) if has_atc else None,
        form_count=parser.form_count,
        has_newsletter_form=parser.has_newsletter_form,
    )

    apps = sorted({app.name for app in APP_SIGNATURES if app.matches(html)})
    technical = TechnicalFacts(
        is_shopify=('Shopify.' in html or 'shopify' in html.lower()
                    or parser.has_shopify_marker),
        theme_name=_theme_name(html),
        detected_apps=tuple(apps),
        has_google_analytics=('google-analytics.com' in html
                              or 'googletagmanager.com' in html or 'gtag(' in html),
        has_facebook_pixel=('facebook.net' in html or 'fbevents.js' in html
                            or 'fbq(' in html),
        has_klaviyo='Klaviyo' in apps,
        script_count=parser.script_count,
        external_script_count=parser.external_scripts,
        blocking_script_count=parser.blocking_scripts,
        has_skip_link=parser.has_skip_link,
        has_aria_labels=parser.aria_label_count > 5,
        lang_attribute=parser.lang,
    )

    return PageFacts(pdp=pdp, structure=structure, technical=technical)
