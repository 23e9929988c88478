"""
modules.py — The five compatibility modules.

Each module takes a MatchSpec (normalized brand) and a creator record and
returns a ScoreResult: score and confidence in [0, 1] plus human-readable
reasons. Modules are independent; score.py weights and combines them.

A creator record is a plain dict (see features.to_creator_profile):
niche, platforms, audience_types, estimated_engagement and
metrics.{top_topics, platform_metrics, compatibility_signals}.
"""

import re
import math
from dataclasses import dataclass, field
from typing import Optional

from creator_graph.policies import DEFAULT_INTENT, clamp01

ENGAGEMENT_TARGET = 0.045

_TOKEN_SPLIT_RE = re.compile(r'[^a-z0-9]+')


@dataclass
class MatchSpec:
    intent: dict = field(default_factory=lambda: dict(DEFAULT_INTENT))
    category: Optional[str] = None
    topics: list = field(default_factory=list)
    audiences: list = field(default_factory=list)
    outcomes: list = field(default_factory=list)
    platforms: list = field(default_factory=list)
    priority_niches: list = field(default_factory=list)
    priority_topics: list = field(default_factory=list)
    evidence_confidence: float = 0.7
    specificity: float = 0.5


@dataclass
class ScoreResult:
    score: float
    confidence: float
    reasons: list = field(default_factory=list)


# ------------------------------------------------------------------ #
# Text helpers
# ------------------------------------------------------------------ #

def norm(s) -> str:
    return str(s or '').strip().lower()


def tokens(s) -> set:
    return {t for t in _TOKEN_SPLIT_RE.split(norm(s)) if t}


def token_overlap(a, b) -> float:
    """Shared tokens over the smaller token set."""
    aa, bb = tokens(a), tokens(b)
    if not aa or not bb:
        return 0.0
    return len(aa & bb) / max(1, min(len(aa), len(bb)))


def token_jaccard(a, b) -> float:
    aa, bb = tokens(a), tokens(b)
    if not aa or not bb:
        return 0.0
    union = len(aa | bb)
    return len(aa & bb) / union if union else 0.0


def uniq_norm(values) -> list:
    out = []
    for v in values or []:
        n = norm(v)
        if n and n not in out:
            out.append(n)
    return out


def best_match_average(brand_values: list, creator_values: list, similarity) -> float:
    total = 0.0
    for b in brand_values:
        total += max((1.0 if b == c else similarity(b, c) for c in creator_values), default=0.0)
    return total / len(brand_values)


def _metrics(creator: dict) -> dict:
    return creator.get('metrics') or {}


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


# ------------------------------------------------------------------ #
# Modules
# ------------------------------------------------------------------ #

def niche_affinity(spec: MatchSpec, creator: dict) -> ScoreResult:
    brand = norm(spec.category)
    niche = norm(creator.get('niche'))
    if not brand or not niche:
        return ScoreResult(0.0, 0.1)
    if brand == niche:
        return ScoreResult(1.0, 0.95, ['category/niche match'])
    if brand in niche or niche in brand:
        return ScoreResult(0.75, 0.8, ['related niche fit'])
    if token_overlap(brand, niche) >= 0.5:
        return ScoreResult(0.55, 0.65, ['partial niche overlap'])
    return ScoreResult(0.0, 0.85)


def topic_similarity(spec: MatchSpec, creator: dict) -> ScoreResult:
    brand_topics = [norm(t) for t in spec.topics if norm(t)]
    creator_topics = [norm(t) for t in _metrics(creator).get('top_topics') or [] if norm(t)]
    if not brand_topics or not creator_topics:
        return ScoreResult(0.0, 0.2)

    score = best_match_average(brand_topics, creator_topics, token_jaccard)
    coverage = min(1, len(brand_topics) / 4)
    confidence = max(0.35, min(0.95, 0.45 + coverage * 0.5))

    reasons = []
    if score >= 0.35:
        reasons.append('topic overlap')
    if score >= 0.65:
        reasons.append('strong topic alignment')
    return ScoreResult(score, confidence, reasons)


def platform_alignment(spec: MatchSpec, creator: dict) -> ScoreResult:
    brand_platforms = uniq_norm(spec.platforms)
    creator_platforms = set(uniq_norm(creator.get('platforms')))
    if not brand_platforms:
        return ScoreResult(0.5, 0.2)
    if not creator_platforms:
        return ScoreResult(0.0, 0.4)

    score = sum(1 for p in brand_platforms if p in creator_platforms) / len(brand_platforms)
    reasons = ['platform alignment'] if score >= 0.5 else []
    return ScoreResult(score, min(0.95, 0.5 + 0.1 * len(brand_platforms)), reasons)


def derive_engagement(platform_metrics: Optional[dict]) -> Optional[dict]:
    """
    Engagement from per-platform metrics.

    Prefers explicit engagement rates (weighted by confidence, sample size
    and reach); falls back to avg_views / followers.
    """
    if not platform_metrics:
        return None
    entries = [m for m in platform_metrics.values() if isinstance(m, dict)]

    signals = []
    for m in entries:
        er = _to_number(m.get('engagement_rate'))
        if not er or er <= 0:
            continue
        conf = _to_number(m.get('confidence'))
        conf = clamp01(0.6 if conf is None else conf)
        sample = _to_number(m.get('sample_size'))
        sample = 1 if sample is None else sample
        followers = _to_number(m.get('followers')) or 0
        w = (max(0.2, conf)
             * max(0.3, min(1, sample / 5))
             * max(1, math.log10(followers + 10) if followers > 0 else 1))
        signals.append((er, w, conf))

    if signals:
        total = sum(w for _, w, _ in signals)
        avg_conf = sum(c for _, _, c in signals) / len(signals)
        return {
            'rate': sum(er * w for er, w, _ in signals) / max(1e-9, total),
            'confidence': clamp01(0.45 + 0.2 * min(1, len(signals) / 3) + 0.25 * avg_conf),
            'signal_count': len(signals),
            'mode': 'engagement_rate',
        }

    proxies = []
    for m in entries:
        views = _to_number(m.get('avg_views'))
        followers = _to_number(m.get('followers'))
        if views is not None and followers and followers > 0:
            proxies.append(views / followers)
    if not proxies:
        return None
    return {
        'rate': sum(proxies) / len(proxies),
        'confidence': clamp01(0.38 + 0.14 * min(1, len(proxies) / 3)),
        'signal_count': len(proxies),
        'mode': 'views_over_followers',
    }


def engagement_fit(spec: MatchSpec, creator: dict) -> ScoreResult:
    direct = _to_number(creator.get('estimated_engagement'))
    derived = derive_engagement(_metrics(creator).get('platform_metrics'))
    has_direct = direct is not None and direct > 0
    has_derived = derived is not None and derived['rate'] > 0

    rate = None
    confidence = 0.25
    if has_direct and has_derived:
        direct_conf = 0.8
        derived_conf = max(0.2, derived['confidence'])
        rate = (direct * direct_conf + derived['rate'] * derived_conf) / (direct_conf + derived_conf)
        confidence = clamp01(0.55 + 0.25 * derived['confidence'])
    elif has_direct:
        rate = direct
        confidence = 0.86
    elif has_derived:
        rate = derived['rate']
        confidence = derived['confidence']

    if not rate:
        return ScoreResult(0.0, 0.25)

    score = clamp01(rate / ENGAGEMENT_TARGET)
    reasons = []
    if score >= 0.8:
        reasons.append('strong engagement')
    if derived and derived['signal_count'] >= 2:
        reasons.append('engagement backed by multi-platform signals')
    return ScoreResult(score, confidence, reasons)


def audience_fit(spec: MatchSpec, creator: dict) -> ScoreResult:
    compat = _metrics(creator).get('compatibility_signals') or {}
    brand_audiences = uniq_norm(spec.audiences)
    creator_audiences = uniq_norm(
        list(creator.get('audience_types') or []) + list(compat.get('audience_signals') or [])
    )
    if not brand_audiences or not creator_audiences:
        return ScoreResult(0.0, 0.2)

    score = best_match_average(brand_audiences, creator_audiences, token_overlap)
    compat_conf = clamp01(compat.get('confidence', 0))
    buying_intent = clamp01(compat.get('buying_intent_score', 0))

    reasons = []
    if score >= 0.3:
        reasons.append('audience fit')
    if score >= 0.65:
        reasons.append('strong audience overlap')
    if buying_intent >= 0.55 and score >= 0.3:
        reasons.append('audience has conversion intent')

    confidence = clamp01(0.45 + 0.08 * min(4, len(brand_audiences)) + 0.15 * compat_conf)
    return ScoreResult(score, confidence, reasons)


# name → module; order is the order modules run and are reported in
MODULES = (
    ('nicheAffinity', niche_affinity),
    ('topicSimilarity', topic_similarity),
    ('platformAlignment', platform_alignment),
    ('engagementFit', engagement_fit),
    ('audienceFit', audience_fit),
)
