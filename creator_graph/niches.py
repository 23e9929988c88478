"""
niches.py — Niche catalog for matching.

ACTIVE_NICHES is the canonical taxonomy the extractor emits and brands
should use. LEGACY_NICHES are labels from older seed data, kept as aliases.
PLANNED_NICHES are approved but not yet covered by extractor rules.
"""

ACTIVE_NICHES = (
    'ai productivity',
    'beauty & skincare',
    'business coaching',
    'creator monetization',
    'ecommerce & marketing',
    'fitness coaching',
    'life coaching',
    'personal finance',
    'real estate investing',
    'wellness & nutrition',
)

LEGACY_NICHES = (
    'ai tools',
    'b2b saas',
    'ecommerce growth',
    'fitness',
    'healthy cooking',
    'mental wellness',
    'skincare',
    'study productivity',
)

PLANNED_NICHES = (
    'fashion & apparel',
    'home & decor',
    'parenting & family',
    'food & recipes',
    'travel',
    'gaming',
    'consumer tech & gadgets',
    'startups & entrepreneurship',
    'careers & job search',
    'education & upskilling',
    'sports & outdoors',
    'pets',
)

ALL_REFERENCE_NICHES = tuple(sorted(set(ACTIVE_NICHES + LEGACY_NICHES + PLANNED_NICHES)))


def is_known_niche(value) -> bool:
    return str(value or '').strip().lower() in ALL_REFERENCE_NICHES
