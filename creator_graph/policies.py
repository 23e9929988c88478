"""
policies.py — Per-intent module weights, blended by a brand's intent vector.
"""

import math

MODULE_NAMES = (
    'nicheAffinity',
    'topicSimilarity',
    'platformAlignment',
    'audienceFit',
    'engagementFit',
)

INTENTS = ('product_sale', 'creator_enablement', 'b2b_leadgen', 'community')

POLICY_WEIGHTS = {
    'product_sale': {
        'nicheAffinity': 0.35,
        'topicSimilarity': 0.30,
        'platformAlignment': 0.10,
        'audienceFit': 0.15,
        'engagementFit': 0.10,
    },
    'creator_enablement': {
        'nicheAffinity': 0.10,
        'topicSimilarity': 0.20,
        'platformAlignment': 0.10,
        'audienceFit': 0.35,
        'engagementFit': 0.25,
    },
    'b2b_leadgen': {
        'nicheAffinity': 0.10,
        'topicSimilarity': 0.25,
        'platformAlignment': 0.10,
        'audienceFit': 0.35,
        'engagementFit': 0.20,
    },
    'community': {
        'nicheAffinity': 0.10,
        'topicSimilarity': 0.20,
        'platformAlignment': 0.10,
        'audienceFit': 0.40,
        'engagementFit': 0.20,
    },
}

DEFAULT_INTENT = {'product_sale': 1.0, 'creator_enablement': 0.0, 'b2b_leadgen': 0.0, 'community': 0.0}


def clamp01(x) -> float:
    try:
        x = float(x)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(x):
        return 0.0
    return max(0.0, min(1.0, x))


def normalize_weights(weights: dict) -> dict:
    """Scale to sum 1; a non-positive sum is returned unchanged."""
    total = sum(weights.values())
    if total <= 0:
        return dict(weights)
    return {k: v / total for k, v in weights.items()}


def blend_policy_weights(intent: dict) -> dict:
    blended = {m: 0.0 for m in MODULE_NAMES}
    for key, alpha in intent.items():
        policy = POLICY_WEIGHTS.get(key)
        if policy is None:
            continue
        a = clamp01(alpha)
        for m in MODULE_NAMES:
            blended[m] += a * policy[m]
    return normalize_weights(blended)
