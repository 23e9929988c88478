"""
compat_signals.py — Derive matchable creator features from enrichment data.

Input is a SignalInput (see features.build_signal_input). Everything is
keyword driven over one lower-cased corpus built from the stan slug, bio,
offers, product types and the SERP titles/snippets/queries of linked
accounts:

  niche          — NICHE_RULES entry with the highest keyword hit ratio
  topics         — niche defaults + TOPIC_RULES + products + intents
  audiences      — niche defaults + AUDIENCE_RULES
  products       — explicit stan product types + PRODUCT_RULES
  intents        — INTENT_RULES
  platforms      — linked accounts, outbound socials, profile/source URLs, metrics
  selling / content style, buying intent, engagement, overall confidence
"""

import re
import math
from dataclasses import dataclass, field
from typing import Optional

from creator_graph.social_metrics import normalize_platform, platform_from_url

FALLBACK_NICHE = 'creator monetization'


@dataclass(frozen=True)
class NicheRule:
    niche: str
    keywords: tuple
    default_topics: tuple
    default_audiences: tuple


# Ordered: on equal hit ratios the earlier rule wins
NICHE_RULES = (
    NicheRule(
        'fitness coaching',
        ('fitness', 'gym', 'workout', 'training', 'coach', 'weight loss', 'fat loss', 'body transformation'),
        ('gym routines', 'fitness transformations', 'nutrition', 'weight loss'),
        ('gym beginners', 'wellness seekers'),
    ),
    NicheRule(
        'personal finance',
        ('finance', 'investing', 'budget', 'credit', 'debt', 'cash flow', 'wealth', 'money habits'),
        ('budgeting', 'saving', 'investing', 'debt payoff'),
        ('young professionals', 'students'),
    ),
    NicheRule(
        'beauty & skincare',
        ('skincare', 'beauty', 'makeup', 'routine', 'haircare', 'self care', 'cosmetics'),
        ('skincare routines', 'product reviews', 'beauty tutorials'),
        ('beauty shoppers', 'women 18-34'),
    ),
    NicheRule(
        'ecommerce & marketing',
        ('ecommerce', 'shopify', 'marketing', 'ads', 'creative strategy', 'conversion', 'funnel', 'ugc'),
        ('paid ads', 'creative testing', 'conversion optimization', 'ugc performance'),
        ('brand owners', 'marketers'),
    ),
    NicheRule(
        'ai productivity',
        ('ai', 'automation', 'agent', 'prompt', 'workflow', 'notion', 'productivity', 'systems'),
        ('ai tools', 'automation workflows', 'productivity systems'),
        ('founders', 'operators'),
    ),
    NicheRule(
        'real estate investing',
        ('real estate', 'property', 'mortgage', 'airbnb', 'rental', 'wholesale', 'investor'),
        ('real estate leads', 'cash flow', 'property investing'),
        ('first-time investors', 'real estate buyers'),
    ),
    NicheRule(
        'business coaching',
        ('coaching', 'consulting', 'mentor', 'strategy call', 'service provider', 'agency', 'clients'),
        ('offer positioning', 'client acquisition', 'service delivery'),
        ('coaches', 'solopreneurs'),
    ),
    NicheRule(
        'wellness & nutrition',
        ('wellness', 'nutrition', 'meal plan', 'hormone', 'healthy lifestyle', 'supplements'),
        ('nutrition plans', 'healthy habits', 'wellness routines'),
        ('health-conscious adults', 'wellness seekers'),
    ),
    NicheRule(
        FALLBACK_NICHE,
        ('creator', 'content creator', 'influencer', 'ugc creator', 'creator store', 'stan store', 'brand deals'),
        ('creator economy', 'brand partnerships', 'digital products'),
        ('content creators', 'solopreneurs'),
    ),
)

# (label, keywords) — every rule with a hit contributes its label
TOPIC_RULES = (
    ('ugc content', ('ugc', 'user generated content', 'creator content')),
    ('affiliate marketing', ('affiliate', 'commission', 'rev share')),
    ('digital products', ('template', 'ebook', 'guide', 'digital product')),
    ('coaching offers', ('coaching', 'strategy call', 'book a call')),
    ('membership growth', ('membership', 'community', 'join')),
    ('newsletter growth', ('newsletter', 'substack', 'subscribe')),
    ('personal branding', ('personal brand', 'thought leadership')),
    ('paid ads', ('meta ads', 'facebook ads', 'tiktok ads', 'paid ads')),
    ('sales funnels', ('funnel', 'landing page', 'checkout')),
    ('fitness routines', ('workout', 'gym', 'routine')),
    ('nutrition', ('nutrition', 'meal plan', 'macros')),
    ('skincare', ('skincare', 'skin', 'beauty')),
    ('investing', ('invest', 'portfolio', 'stocks')),
    ('budgeting', ('budget', 'debt', 'credit')),
    ('real estate', ('real estate', 'property', 'mortgage')),
    ('ai automation', ('automation', 'ai', 'agent', 'prompt')),
)

AUDIENCE_RULES = (
    ('content creators', ('creator', 'influencer', 'ugc creator')),
    ('founders', ('founder', 'startup', 'operator')),
    ('coaches', ('coach', 'coaching', 'mentor')),
    ('brand owners', ('brand owner', 'ecommerce', 'shopify')),
    ('young professionals', ('young professionals', 'career', '9-5')),
    ('students', ('student', 'college', 'study')),
    ('fitness beginners', ('fitness beginners', 'gym beginner', 'weight loss')),
    ('beauty shoppers', ('beauty', 'skincare', 'makeup')),
    ('real estate buyers', ('home buyer', 'mortgage', 'real estate')),
)

PRODUCT_RULES = (
    ('coaching', ('coaching', 'strategy call', 'book a call')),
    ('course', ('course', 'program', 'masterclass')),
    ('template', ('template', 'notion', 'swipe file')),
    ('membership', ('membership', 'community', 'mastermind')),
    ('newsletter', ('newsletter', 'substack')),
    ('digital guide', ('ebook', 'guide', 'pdf')),
    ('service', ('service', 'done for you', 'agency')),
    ('ugc package', ('ugc package', 'ugc bundle', 'content package')),
)

INTENT_RULES = (
    ('direct_purchase', ('buy', 'checkout', 'purchase', 'shop now')),
    ('lead_generation', ('book', 'apply', 'consult', 'strategy call')),
    ('affiliate', ('affiliate', 'commission', 'rev share')),
    ('community', ('join community', 'membership', 'newsletter', 'subscribe')),
    ('ugc', ('ugc', 'user generated content')),
    ('digital_product', ('template', 'course', 'guide', 'ebook')),
)

# cta style → selling style; intent fallbacks follow in infer_selling_style
_CTA_SELLING_STYLE = {
    'consultative': 'consultative',
    'transactional': 'direct_response',
    'community': 'community_led',
    'inbound_dm': 'dm_conversion',
}

_CONTENT_STYLE = {
    'consultative': 'consultative coaching-style content',
    'direct_response': 'direct response offer-led content',
    'community_led': 'community and newsletter-led content',
    'dm_conversion': 'personal brand and DM-led conversion content',
}


@dataclass
class SignalInput:
    canonical_stan_slug: Optional[str] = None
    bio_description: Optional[str] = None
    offers: list = field(default_factory=list)
    pricing_points: list = field(default_factory=list)
    product_types: list = field(default_factory=list)
    outbound_socials: list = field(default_factory=list)
    cta_style: Optional[str] = None
    account_titles: list = field(default_factory=list)
    account_snippets: list = field(default_factory=list)
    account_queries: list = field(default_factory=list)
    account_platforms: list = field(default_factory=list)
    profile_urls: list = field(default_factory=list)
    source_urls: list = field(default_factory=list)
    social_platform_metrics: dict = field(default_factory=dict)
    social_estimated_engagement: Optional[float] = None
    stan_confidence: Optional[float] = None
    social_confidence: Optional[float] = None


@dataclass
class CompatibilitySignals:
    niche: str
    niche_confidence: float
    top_topics: list
    audience_types: list
    products_sold: list
    platforms: list
    content_style: str
    estimated_engagement: Optional[float]
    primary_platform: Optional[str]
    buying_intent_score: float
    selling_style: str
    intent_signals: list
    confidence: float
    platform_metrics: dict
    evidence: dict

    def to_dict(self) -> dict:
        return {
            'niche': self.niche,
            'nicheConfidence': self.niche_confidence,
            'topTopics': self.top_topics,
            'audienceTypes': self.audience_types,
            'productsSold': self.products_sold,
            'platforms': self.platforms,
            'contentStyle': self.content_style,
            'estimatedEngagement': self.estimated_engagement,
            'primaryPlatform': self.primary_platform,
            'buyingIntentScore': self.buying_intent_score,
            'sellingStyle': self.selling_style,
            'intentSignals': self.intent_signals,
            'confidence': self.confidence,
            'platformMetrics': self.platform_metrics,
            'evidence': self.evidence,
        }


# ------------------------------------------------------------------ #
# Keyword matching
# ------------------------------------------------------------------ #

def _clamp(x, low: float = 0.0, high: float = 1.0) -> float:
    if x is None or not math.isfinite(x):
        return low
    return max(low, min(high, x))


def _to_number(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            n = float(value)
        except ValueError:
            return None
        return n if math.isfinite(n) else None
    return None


def uniq_strings(values) -> list:
    """Trimmed, case-insensitively deduplicated, first spelling kept."""
    seen = set()
    out = []
    for raw in values:
        value = str(raw if raw is not None else '').strip()
        if not value or value.lower() in seen:
            continue
        seen.add(value.lower())
        out.append(value)
    return out


def contains_keyword(corpus: str, keyword: str) -> bool:
    """Phrases match as substrings; single words need word boundaries."""
    k = keyword.strip().lower()
    if not k:
        return False
    if ' ' in k:
        return k in corpus
    return re.search(rf'\b{re.escape(k)}\b', corpus, re.IGNORECASE) is not None


def match_keywords(corpus: str, keywords) -> list:
    return uniq_strings(k.lower() for k in keywords if contains_keyword(corpus, k))


def keyword_values(corpus: str, rules) -> tuple:
    """(labels with at least one hit, all keywords that hit)."""
    values = []
    matched = []
    for label, keywords in rules:
        hits = match_keywords(corpus, keywords)
        if hits:
            values.append(label)
            matched.extend(hits)
    return uniq_strings(values), uniq_strings(matched)


def select_niche(corpus: str) -> tuple:
    """(rule, hit ratio, matched keywords); the fallback rule with ratio 0 when nothing hits."""
    best = None
    best_score = 0.0
    best_hits = []
    for rule in NICHE_RULES:
        hits = match_keywords(corpus, rule.keywords)
        if not hits:
            continue
        score = len(hits) / max(1, len(rule.keywords))
        if score > best_score:
            best, best_score, best_hits = rule, score, hits
    if best is None:
        best = next(r for r in NICHE_RULES if r.niche == FALLBACK_NICHE)
    return best, best_score, best_hits


# ------------------------------------------------------------------ #
# Platform metrics
# ------------------------------------------------------------------ #

def _platform(value) -> Optional[str]:
    p = normalize_platform(value)
    return None if p == 'unknown' else p


def sanitize_metric(value) -> Optional[dict]:
    if not isinstance(value, dict):
        return None
    followers = _to_number(value.get('followers'))
    avg_views = _to_number(value.get('avg_views'))
    engagement = _to_number(value.get('engagement_rate'))
    confidence = _to_number(value.get('confidence'))
    sample_size = _to_number(value.get('sample_size'))
    source = value.get('source')

    out = {}
    if followers is not None:
        out['followers'] = max(0, int(round(followers)))
    if avg_views is not None:
        out['avg_views'] = max(0, int(round(avg_views)))
    if engagement is not None:
        out['engagement_rate'] = _clamp(engagement)
    if confidence is not None:
        out['confidence'] = _clamp(confidence)
    if sample_size is not None:
        out['sample_size'] = max(0, int(round(sample_size)))
    if isinstance(source, str) and source:
        out['source'] = source
    return out or None


def sanitize_platform_metrics(raw: dict) -> dict:
    out = {}
    for key, value in (raw or {}).items():
        platform = _platform(key)
        metric = sanitize_metric(value) if platform else None
        if metric:
            out[platform] = metric
    return out


def pick_primary_platform(platform_metrics: dict, fallback: list) -> Optional[str]:
    if not platform_metrics:
        return fallback[0] if fallback else None

    def reach(item):
        metric = item[1]
        views = metric.get('avg_views') or 0
        followers = metric.get('followers') or 0
        conf = metric.get('confidence', 0.4)
        return (math.log10(max(1, views + 1)) * 0.5
                + math.log10(max(1, followers + 1)) * 0.35
                + conf * 0.15)

    # sorted() is stable, so ties keep metric insertion order
    return sorted(platform_metrics.items(), key=reach, reverse=True)[0][0]


def estimate_engagement(explicit: Optional[float], platform_metrics: dict) -> Optional[float]:
    explicit = _to_number(explicit)
    if explicit is not None and explicit > 0:
        return round(explicit, 4)

    weighted = 0.0
    total = 0.0
    for metric in platform_metrics.values():
        er = metric.get('engagement_rate')
        if not er or er <= 0:
            continue
        followers = metric.get('followers', 1)
        w = max(0.2, metric.get('confidence', 0.4)) * max(1, math.log10(followers + 10))
        weighted += er * w
        total += w
    if total <= 0:
        return None
    return round(weighted / max(1e-9, total), 4)


# ------------------------------------------------------------------ #
# Style & scores
# ------------------------------------------------------------------ #

def infer_selling_style(cta_style: Optional[str], intents: list) -> str:
    style = _CTA_SELLING_STYLE.get(str(cta_style or '').lower())
    if style:
        return style
    if 'direct_purchase' in intents:
        return 'direct_response'
    if 'lead_generation' in intents:
        return 'consultative'
    if 'community' in intents:
        return 'community_led'
    return 'educational'


def infer_content_style(selling_style: str, topics: list) -> str:
    if selling_style in _CONTENT_STYLE:
        return _CONTENT_STYLE[selling_style]
    if 'ugc content' in topics:
        return 'ugc demonstration content'
    return 'educational creator content'


def buying_intent_score(pricing_points: list, products: list, intents: list,
                        selling_style: str, has_metrics: bool,
                        primary_platform: Optional[str]) -> float:
    score = 0.3
    if pricing_points:
        score += 0.15
    if len(products) >= 1:
        score += 0.1
    if len(products) >= 3:
        score += 0.06
    if 'direct_purchase' in intents:
        score += 0.14
    if 'lead_generation' in intents:
        score += 0.1
    if 'affiliate' in intents:
        score += 0.08
    if selling_style in ('direct_response', 'consultative'):
        score += 0.08
    if has_metrics:
        score += 0.07
    if primary_platform:
        score += 0.04
    return round(_clamp(score, 0.1, 0.98), 3)


def overall_confidence(stan_conf: float, social_conf: float, niche_conf: float,
                       topics: list, audiences: list, products: list,
                       has_metrics: bool) -> float:
    c = 0.26
    c += 0.23 * stan_conf
    c += 0.2 * social_conf
    c += 0.12 * niche_conf
    c += 0.07 * min(1, len(topics) / 8)
    c += 0.05 * min(1, len(audiences) / 5)
    c += 0.04 * min(1, len(products) / 4)
    c += 0.08 if has_metrics else 0
    return round(_clamp(c, 0.2, 0.98), 3)


def _sources_used(data: SignalInput) -> list:
    sources = []
    if data.bio_description:
        sources.append('stan_bio')
    if data.offers:
        sources.append('stan_offers')
    if data.product_types:
        sources.append('stan_product_types')
    if data.pricing_points:
        sources.append('stan_pricing_points')
    if data.account_snippets or data.account_titles:
        sources.append('serp_account_text')
    if data.social_platform_metrics:
        sources.append('social_metrics')
    return sources


def build_corpus(data: SignalInput) -> str:
    parts = [
        data.canonical_stan_slug or '',
        data.bio_description or '',
        *data.offers,
        *data.product_types,
        *data.account_titles,
        *data.account_snippets,
        *data.account_queries,
    ]
    return ' \n '.join(str(p) for p in parts).lower()


# ------------------------------------------------------------------ #
# Public interface
# ------------------------------------------------------------------ #

def extract_compatibility_signals(data: SignalInput) -> CompatibilitySignals:
    corpus = build_corpus(data)

    niche, niche_ratio, niche_hits = select_niche(corpus)
    topic_values, topic_hits = keyword_values(corpus, TOPIC_RULES)
    audience_values, audience_hits = keyword_values(corpus, AUDIENCE_RULES)
    product_values, product_hits = keyword_values(corpus, PRODUCT_RULES)
    intent_values, intent_hits = keyword_values(corpus, INTENT_RULES)

    products = uniq_strings(
        [str(p).lower() for p in data.product_types] + product_values
    )[:10]
    topics = uniq_strings(
        list(niche.default_topics) + topic_values + products
        + [v.replace('_', ' ') for v in intent_values]
    )[:12]
    audiences = uniq_strings(list(niche.default_audiences) + audience_values)[:8]

    metrics = sanitize_platform_metrics(data.social_platform_metrics)
    platforms = [p for p in uniq_strings(
        [_platform(p) for p in data.account_platforms]
        + [platform_from_url(u) for u in data.outbound_socials]
        + [platform_from_url(u) for u in data.profile_urls]
        + [platform_from_url(u) for u in data.source_urls]
        + list(metrics)
    ) if p != 'unknown']

    primary = pick_primary_platform(metrics, platforms)
    engagement = estimate_engagement(data.social_estimated_engagement, metrics)
    selling_style = infer_selling_style(data.cta_style, intent_values)
    content_style = infer_content_style(selling_style, topic_values)

    niche_conf = round(_clamp(0.35 + niche_ratio * 1.3, 0.25, 0.98), 3)
    stan_conf = _to_number(data.stan_confidence)
    stan_conf = _clamp(0.4 if stan_conf is None else stan_conf)
    social_conf = _to_number(data.social_confidence)
    social_conf = _clamp(0.4 if social_conf is None else social_conf)

    return CompatibilitySignals(
        niche=niche.niche,
        niche_confidence=niche_conf,
        top_topics=topics,
        audience_types=audiences,
        products_sold=products,
        platforms=platforms,
        content_style=content_style,
        estimated_engagement=engagement,
        primary_platform=primary,
        buying_intent_score=buying_intent_score(
            data.pricing_points, products, intent_values, selling_style, bool(metrics), primary,
        ),
        selling_style=selling_style,
        intent_signals=intent_values,
        confidence=overall_confidence(
            stan_conf, social_conf, niche_conf, topics, audiences, products, bool(metrics),
        ),
        platform_metrics=metrics,
        evidence={
            'matchedNicheKeywords': niche_hits,
            'matchedTopicKeywords': topic_hits,
            'matchedAudienceKeywords': audience_hits,
            'matchedProductKeywords': product_hits,
            'matchedIntentKeywords': intent_hits,
            'sourcesUsed': uniq_strings(_sources_used(data)),
        },
    )
