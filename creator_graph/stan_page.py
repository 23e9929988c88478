"""
stan_page.py — Turn a captured stan.store page into profile signals.

No browser code lives here. stan_enrich.py captures a page into a plain
dict (see CAPTURE_JS there); snapshot_from_page_state() turns that dict
into a StanPageSnapshot, and extract_stan_signals() derives:

  profile name / handle   — header name, else the "Name (@handle) | Stan" title
  bio                     — header bio, else the meta description
  offers + offer cards    — callout blocks, pill blocks, embedded __NUXT__ products
  pricing points          — card prices plus "$1,299.00"-style amounts in text
  outbound socials        — header/content links to social hosts, trackers removed
  email, CTA style, product types, image URLs, source text
  confidence              — weighted presence of the above
"""

import re
import math
from dataclasses import dataclass, field, asdict
from typing import Iterable, Optional
from urllib.parse import urljoin, urlsplit

MAX_CARDS = 80
SOURCE_TEXT_CAP = 40_000
BODY_TEXT_CAP = 120_000

_MONEY_RE = re.compile(r'\$\s?\d{1,3}(?:,\d{3})*(?:\.\d{2})?')
_EMAIL_RE = re.compile(r'[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}', re.IGNORECASE)
_SOCIAL_HOST_RE = re.compile(
    r'(x\.com|twitter\.com|instagram\.com|linkedin\.com|tiktok\.com|youtube\.com|youtu\.be|facebook\.com)',
    re.IGNORECASE,
)
_TITLE_SUFFIX_RE = re.compile(r'\|\s*stan.*$', re.IGNORECASE)
_TITLE_NAME_RE = re.compile(r'^(.*?)\s*\(@')
_TITLE_HANDLE_RE = re.compile(r'\(@([^)]+)\)', re.IGNORECASE)

_BLOCKED_HOST_PARTS = (
    'google.', 'gstatic.com', 'clarity.ms', 'googletagmanager.com',
    'googleapis.com', 'stanwith.me',
)

# (style, pattern) — first match wins
CTA_RULES = (
    ('consultative', re.compile(r'\b(book|schedule|apply|consult|1:1|coaching)\b')),
    ('transactional', re.compile(r'\b(buy|checkout|shop|purchase|order)\b')),
    ('community', re.compile(r'\b(join|subscribe|newsletter|community)\b')),
    ('inbound_dm', re.compile(r'\b(dm|message|contact)\b')),
)

# (type, text pattern, card source-type hint) — every match is kept
PRODUCT_TYPE_RULES = (
    ('course', re.compile(r'\b(course|program|masterclass|workshop|class)\b'), re.compile(r'\bdigital-download\b')),
    ('coaching', re.compile(r'\b(coaching|consulting|mentor|vip|1:1|one-on-one)\b'), re.compile(r'\bmeeting\b')),
    ('template', re.compile(r'\b(template|notion|swipe file)\b'), None),
    ('membership', re.compile(r'\b(membership|community)\b'), None),
    ('newsletter', re.compile(r'\b(newsletter|substack)\b'), None),
    ('digital_guide', re.compile(r'\b(ebook|guide|pdf|resource)\b'), None),
    ('service', re.compile(r'\b(service|done-for-you|agency)\b'), None),
)


@dataclass
class OfferCard:
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[str] = None
    cta: Optional[str] = None
    image_url: Optional[str] = None
    href: Optional[str] = None
    source: str = 'dom_callout'
    source_type: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'title': self.title,
            'description': self.description,
            'price': self.price,
            'cta': self.cta,
            'imageUrl': self.image_url,
            'href': self.href,
            'source': self.source,
            'sourceType': self.source_type,
        }


@dataclass
class StanPageSnapshot:
    final_url: str
    page_title: Optional[str] = None
    meta_description: Optional[str] = None
    og_image: Optional[str] = None
    full_name: Optional[str] = None
    bio: Optional[str] = None
    header_image_url: Optional[str] = None
    social_links: list = field(default_factory=list)
    anchor_links: list = field(default_factory=list)
    offer_cards: list = field(default_factory=list)
    offer_image_urls: list = field(default_factory=list)
    body_text: str = ''
    html_length: int = 0


@dataclass
class StanSignals:
    profile_name: Optional[str]
    profile_handle: Optional[str]
    bio_description: Optional[str]
    offers: list
    offer_cards: list
    offer_image_urls: list
    header_image_url: Optional[str]
    pricing_points: list
    product_types: list
    outbound_socials: list
    email: Optional[str]
    cta_style: str
    source_text: str
    source_html_len: int
    extracted_confidence: float

    def to_dict(self) -> dict:
        out = asdict(self)
        out['offer_cards'] = [c.to_dict() for c in self.offer_cards]
        return out


# ------------------------------------------------------------------ #
# Text helpers
# ------------------------------------------------------------------ #

def clean_text(value, cap: int = 2_000) -> Optional[str]:
    """Collapse whitespace (nbsp included); None for empty input."""
    if value is None:
        return None
    text = re.sub(r'\s+', ' ', str(value).replace('\xa0', ' ')).strip()
    return text[:cap] if text else None


def unique_strings(values: Iterable, cap: int = 100) -> list:
    """Cleaned, case-insensitively de-duplicated, first spelling kept."""
    out = []
    seen = set()
    for raw in values:
        value = clean_text(raw, 4_000)
        if not value or value.lower() in seen:
            continue
        seen.add(value.lower())
        out.append(value)
        if len(out) >= cap:
            break
    return out


def normalize_slug(value: str) -> str:
    return str(value or '').strip().lower().strip('/')


def extract_emails(text: str) -> list:
    return unique_strings(_EMAIL_RE.findall(text or ''), 20)


def extract_money_values(text: str) -> list:
    return unique_strings((re.sub(r'\s+', '', m) for m in _MONEY_RE.findall(text or '')), 40)


def _host(url: str) -> Optional[str]:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def is_useful_outbound(url: str) -> bool:
    host = _host(url)
    if not host:
        return False
    if any(part in host for part in _BLOCKED_HOST_PARTS):
        return False
    return not (host == 'stan.store' or host.endswith('.stan.store'))


def outbound_social_urls(urls: Iterable[str]) -> list:
    return unique_strings((u for u in urls if _SOCIAL_HOST_RE.search(u)), 30)


def detect_cta_style(text: str) -> str:
    t = (text or '').lower()
    for style, pattern in CTA_RULES:
        if pattern.search(t):
            return style
    return 'generic'


def classify_product_types(corpus: str, cards: list) -> list:
    t = (corpus or '').lower()
    hints = ' '.join(str(c.source_type or '').lower() for c in cards)
    types = []
    for name, pattern, hint in PRODUCT_TYPE_RULES:
        if pattern.search(t) or (hint is not None and hint.search(hints)):
            types.append(name)
    return unique_strings(types, 20)


def profile_name_from_title(page_title: Optional[str]) -> Optional[str]:
    title = clean_text(page_title, 200)
    if not title:
        return None
    no_suffix = _TITLE_SUFFIX_RE.sub('', title).strip()
    m = _TITLE_NAME_RE.match(no_suffix)
    if m and m.group(1):
        return clean_text(m.group(1), 120)
    return clean_text(no_suffix, 120)


def profile_handle_from_title(page_title: Optional[str]) -> Optional[str]:
    title = clean_text(page_title, 250)
    if not title:
        return None
    m = _TITLE_HANDLE_RE.search(title)
    if not m:
        return None
    return clean_text(m.group(1).lstrip('@'), 80)


# ------------------------------------------------------------------ #
# Snapshot building
# ------------------------------------------------------------------ #

def _absolute(value, base_url: str) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    try:
        return urljoin(base_url, value.strip()) or None
    except ValueError:
        return None


def format_price(amount, currency) -> Optional[str]:
    """Embedded product price → "$1,299" / "EUR 49.5"; None unless a positive number."""
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return None
    if not math.isfinite(amount) or amount <= 0:
        return None
    if float(amount).is_integer():
        formatted = f'{int(amount):,}'
    else:
        formatted = f'{amount:,.3f}'.rstrip('0').rstrip('.')
    code = (clean_text(currency, 10) or 'USD').upper()
    return f'${formatted}' if code == 'USD' else f'{code} {formatted}'


def _dom_card(block: dict, source: str, base_url: str) -> OfferCard:
    return OfferCard(
        title=clean_text(block.get('title'), 180),
        description=clean_text(block.get('description'), 320),
        price=clean_text(block.get('price'), 60),
        cta=clean_text(block.get('cta'), 120),
        image_url=_absolute(block.get('imageUrl'), base_url),
        href=_absolute(block.get('href'), base_url),
        source=source,
    )


def nuxt_cards(pages, base_url: str) -> list:
    """Offer cards from the embedded window.__NUXT__ store pages."""
    cards = []
    for page in pages if isinstance(pages, list) else []:
        data = page.get('data') if isinstance(page, dict) else None
        product = data.get('product') if isinstance(data, dict) else None
        if not isinstance(product, dict):
            continue
        price = product.get('price') if isinstance(product.get('price'), dict) else {}
        button = data.get('button') if isinstance(data.get('button'), dict) else {}
        link = product.get('link') if isinstance(product.get('link'), dict) else {}
        cards.append(OfferCard(
            title=clean_text(product.get('title'), 180),
            description=clean_text(product.get('description'), 350),
            price=format_price(price.get('amount'), price.get('currency') or 'USD'),
            cta=clean_text(button.get('button_text'), 120),
            image_url=_absolute(product.get('image'), base_url),
            href=_absolute(link.get('url'), base_url),
            source='nuxt',
            source_type=clean_text(product.get('type'), 80),
        ))
    return cards


def snapshot_from_page_state(state: dict) -> StanPageSnapshot:
    """Build a snapshot from the dict returned by the in-page capture script."""
    base = str(state.get('finalUrl') or '')
    cards = [_dom_card(b, 'dom_callout', base) for b in state.get('calloutBlocks') or []]
    cards += [_dom_card(b, 'dom_pill', base) for b in state.get('pillBlocks') or []]
    cards += nuxt_cards(state.get('nuxtPages'), base)
    cards = [c for c in cards if c.title or c.price or c.cta][:MAX_CARDS]

    header_image = _absolute(state.get('headerImageUrl'), base)
    og_image = _absolute(state.get('ogImage'), base)
    content_images = [_absolute(u, base) for u in state.get('contentImages') or []]

    return StanPageSnapshot(
        final_url=base,
        page_title=clean_text(state.get('pageTitle'), 280),
        meta_description=clean_text(state.get('metaDescription'), 500),
        og_image=og_image,
        full_name=clean_text(state.get('fullName'), 140),
        bio=clean_text(state.get('bio'), 320),
        header_image_url=header_image,
        social_links=unique_strings((_absolute(u, base) for u in state.get('socialLinks') or []), 60),
        anchor_links=unique_strings((_absolute(u, base) for u in state.get('anchorLinks') or []), 240),
        offer_cards=cards,
        offer_image_urls=unique_strings(
            [header_image, og_image, *(c.image_url for c in cards), *content_images], 120
        ),
        body_text=clean_text(state.get('bodyText'), BODY_TEXT_CAP) or '',
        html_length=int(state.get('htmlLength') or 0),
    )


# ------------------------------------------------------------------ #
# Signal extraction
# ------------------------------------------------------------------ #

def build_source_text(page: StanPageSnapshot) -> str:
    lines = unique_strings([
        page.page_title,
        page.meta_description,
        page.full_name,
        page.bio,
        *(c.title for c in page.offer_cards),
        *(c.description for c in page.offer_cards),
        *(c.cta for c in page.offer_cards),
        page.body_text,
    ], 300)
    return '\n'.join(lines)[:SOURCE_TEXT_CAP]


def confidence_score(profile_name, bio, offers, prices, product_types,
                     socials, header_image_url, email) -> float:
    score = 0.25
    if profile_name:
        score += 0.08
    if bio:
        score += 0.12
    if offers:
        score += 0.16
    if prices:
        score += 0.14
    if product_types:
        score += 0.13
    if socials:
        score += 0.1
    if header_image_url:
        score += 0.07
    if email:
        score += 0.07
    if len(offers) >= 3:
        score += 0.04
    if len(prices) >= 2:
        score += 0.04
    return max(0.0, min(1.0, round(score, 3)))


def extract_stan_signals(page: StanPageSnapshot, stan_slug: str) -> StanSignals:
    cards = page.offer_cards
    profile_name = page.full_name or profile_name_from_title(page.page_title)
    profile_handle = profile_handle_from_title(page.page_title) or stan_slug
    offers = unique_strings((c.title for c in cards), 40)

    card_prices = unique_strings((c.price for c in cards), 40)
    text_prices = extract_money_values('\n'.join([
        page.body_text,
        *((c.title or '') for c in cards),
        *((c.description or '') for c in cards),
    ]))
    pricing_points = unique_strings(card_prices + text_prices, 40)

    all_links = unique_strings(page.social_links + page.anchor_links, 400)
    useful_links = unique_strings((u for u in all_links if is_useful_outbound(u)), 100)
    outbound_socials = outbound_social_urls(useful_links)

    image_urls = unique_strings([
        page.header_image_url,
        page.og_image,
        *page.offer_image_urls,
        *(c.image_url for c in cards),
    ], 80)

    bio = page.bio or page.meta_description
    emails = extract_emails('\n'.join([page.body_text, *useful_links]))
    email = emails[0] if emails else None
    cta_style = detect_cta_style('\n'.join([page.body_text, *((c.cta or '') for c in cards)]))
    source_text = build_source_text(page)
    product_types = classify_product_types(
        '\n'.join([source_text, page.page_title or '', *((c.source_type or '') for c in cards)]),
        cards,
    )

    return StanSignals(
        profile_name=profile_name,
        profile_handle=profile_handle,
        bio_description=bio,
        offers=offers,
        offer_cards=cards,
        offer_image_urls=image_urls,
        header_image_url=page.header_image_url or page.og_image,
        pricing_points=pricing_points,
        product_types=product_types,
        outbound_socials=outbound_socials,
        email=email,
        cta_style=cta_style,
        source_text=source_text,
        source_html_len=page.html_length,
        extracted_confidence=confidence_score(
            profile_name, bio, offers, pricing_points, product_types,
            outbound_socials, page.header_image_url, email,
        ),
    )
