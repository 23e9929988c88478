"""
score.py — Brand × creator compatibility score.

  1  base weights   — policy tables blended by the brand's intent vector
  2  modules        — niche, topic, platform, engagement, audience
  3  weights        — base × module confidence, renormalized; when every
                      module has ~zero confidence the base weights are kept
  4  priority boost — bounded bonus for priority niche/topic matches
  5  total          — clamp01(weighted base + boost)

Reasons are module reasons whose score × confidence ≥ REASON_GATE, plus a
"priority fit: ..." reason when the boost applies.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from creator_graph.modules import MODULES, MatchSpec, ScoreResult
from creator_graph.niches import is_known_niche
from creator_graph.policies import DEFAULT_INTENT, INTENTS, blend_policy_weights, clamp01
from creator_graph.priority import compute_priority_boost, priority_reason

log = logging.getLogger(__name__)

REASON_GATE = 0.15


@dataclass
class ModuleOutput:
    name: str
    score: float
    confidence: float
    reasons: list = field(default_factory=list)


@dataclass
class CompatibilityScore:
    total: float
    weights: dict
    modules: list
    reasons: list
    priority: dict
    meta: dict

    def to_dict(self) -> dict:
        return {
            'total': self.total,
            'weights': self.weights,
            'modules': [
                {'name': m.name, 'score': m.score, 'confidence': m.confidence, 'reasons': m.reasons}
                for m in self.modules
            ],
            'reasons': self.reasons,
            'priority': self.priority,
            'meta': self.meta,
        }


def _list(value) -> list:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [v for v in value if v]


def _intent(raw) -> dict:
    if not isinstance(raw, dict):
        return dict(DEFAULT_INTENT)
    intent = {k: clamp01(raw.get(k, 0)) for k in INTENTS}
    if sum(intent.values()) <= 0:
        return dict(DEFAULT_INTENT)
    return intent


def build_match_spec(brand: dict) -> MatchSpec:
    """Normalize a brand record; topics fall back to campaign angles, then goals."""
    topics = (_list(brand.get('match_topics'))
              or _list(brand.get('campaign_angles'))
              or _list(brand.get('goals')))
    category = brand.get('category') or None
    if category and not is_known_niche(category):
        log.debug(f'Brand category "{category}" is not in the niche catalog')

    return MatchSpec(
        intent=_intent(brand.get('intent')),
        category=category,
        topics=topics,
        audiences=_list(brand.get('target_audience')),
        outcomes=_list(brand.get('goals')),
        platforms=_list(brand.get('preferred_platforms')),
        priority_niches=_list(brand.get('priority_niches')),
        priority_topics=_list(brand.get('priority_topics')),
    )


def confidence_blend_weights(base_weights: dict, modules: list) -> dict:
    out = {k: 0.0 for k in base_weights}
    for m in modules:
        out[m.name] = base_weights.get(m.name, 0.0) * clamp01(m.confidence)
    total = sum(out.values())
    if total <= 1e-9:
        return dict(base_weights)
    return {k: v / total for k, v in out.items()}


def _module_output(name: str, result: ScoreResult) -> ModuleOutput:
    return ModuleOutput(
        name=name,
        score=clamp01(result.score),
        confidence=clamp01(result.confidence),
        reasons=[str(r) for r in result.reasons or []],
    )


def compute_compatibility_score(brand: dict, creator: dict,
                                spec: Optional[MatchSpec] = None) -> CompatibilityScore:
    spec = spec or build_match_spec(brand)
    base_weights = blend_policy_weights(spec.intent)

    modules = [_module_output(name, fn(spec, creator)) for name, fn in MODULES]
    weights = confidence_blend_weights(base_weights, modules)
    weighted = sum(m.score * weights.get(m.name, 0.0) for m in modules)

    priority = compute_priority_boost(spec, creator)
    total = clamp01(weighted + priority['boost'])

    reasons = []
    for m in modules:
        if m.score * m.confidence < REASON_GATE:
            continue
        for r in m.reasons:
            if r and r not in reasons:
                reasons.append(r)
    if priority['matches']:
        reasons.append(priority_reason(priority['matches']))

    platforms = creator.get('platforms') or []
    return CompatibilityScore(
        total=round(total, 4),
        weights=weights,
        modules=[
            ModuleOutput(m.name, round(m.score, 4), round(m.confidence, 4), m.reasons)
            for m in modules
        ],
        reasons=reasons,
        priority=priority,
        meta={
            'bestPlatform': str(platforms[0]).lower() if platforms else None,
            'baseWeights': base_weights,
            'brandTopicsCount': len(spec.topics),
            'creatorTopicsCount': len((creator.get('metrics') or {}).get('top_topics') or []),
        },
    )


def rank_creators(brand: dict, creators: list) -> list:
    """[(creator, CompatibilityScore)] best first."""
    spec = build_match_spec(brand)
    scored = [(c, compute_compatibility_score(brand, c, spec)) for c in creators]
    scored.sort(key=lambda pair: pair[1].total, reverse=True)
    return scored
