"""
features.py — Glue between stored enrichment rows and the scoring engine.

build_signal_input() reads one identity's stan profile, linked raw accounts
and social signals from the store; to_creator_profile() reshapes the
extractor's output into the creator record score.py consumes.
"""

import logging
from typing import Optional

from creator_graph.compat_signals import (
    CompatibilitySignals,
    SignalInput,
    extract_compatibility_signals,
)
from creator_graph.social_metrics import as_string_list

log = logging.getLogger(__name__)


def _metric_from_social_row(row: dict) -> dict:
    return {
        'followers': row.get('followers_estimate'),
        'avg_views': row.get('avg_views_estimate'),
        'engagement_rate': row.get('engagement_rate_estimate'),
        'confidence': row.get('extraction_confidence'),
        'sample_size': row.get('sample_size'),
        'source': row.get('source'),
    }


def build_signal_input(store, creator_identity_id: str) -> SignalInput:
    stan = store.get_stan_profile(creator_identity_id) or {}
    accounts = store.list_identity_accounts(creator_identity_id)
    socials = store.list_social_profiles(creator_identity_id)

    metrics = {}
    for row in socials:
        if row.get('platform'):
            metrics[row['platform']] = _metric_from_social_row(row)

    confidences = [
        float(r['extraction_confidence']) for r in socials
        if isinstance(r.get('extraction_confidence'), (int, float))
    ]

    def texts(key):
        return [a[key] for a in accounts if a.get(key)]

    log.debug(
        f'{creator_identity_id}: stan={"yes" if stan else "no"} '
        f'accounts={len(accounts)} social_rows={len(socials)}'
    )
    return SignalInput(
        canonical_stan_slug=stan.get('stan_slug'),
        bio_description=stan.get('bio_description'),
        offers=as_string_list(stan.get('offers')),
        pricing_points=as_string_list(stan.get('pricing_points')),
        product_types=as_string_list(stan.get('product_types')),
        outbound_socials=as_string_list(stan.get('outbound_socials')),
        cta_style=stan.get('cta_style'),
        account_titles=texts('title'),
        account_snippets=texts('snippet'),
        account_queries=texts('query'),
        account_platforms=texts('platform'),
        profile_urls=texts('normalized_profile_url'),
        source_urls=texts('source_url'),
        social_platform_metrics=metrics,
        stan_confidence=stan.get('extracted_confidence'),
        social_confidence=sum(confidences) / len(confidences) if confidences else None,
    )


def to_creator_profile(signals: CompatibilitySignals, creator_id: Optional[str] = None) -> dict:
    """Creator record in the shape compute_compatibility_score() reads."""
    return {
        'id': creator_id,
        'niche': signals.niche,
        'platforms': list(signals.platforms),
        'audience_types': list(signals.audience_types),
        'content_style': signals.content_style,
        'products_sold': list(signals.products_sold),
        'estimated_engagement': signals.estimated_engagement,
        'metrics': {
            'top_topics': list(signals.top_topics),
            'platform_metrics': dict(signals.platform_metrics),
            'compatibility_signals': {
                'audience_signals': list(signals.audience_types),
                'confidence': signals.confidence,
                'buying_intent_score': signals.buying_intent_score,
                'selling_style': signals.selling_style,
                'intent_signals': list(signals.intent_signals),
                'primary_platform': signals.primary_platform,
                'niche_confidence': signals.niche_confidence,
            },
        },
    }


def identity_signals(store, creator_identity_id: str) -> dict:
    """Extract signals for one stored identity; used by the `signals` command."""
    signals = extract_compatibility_signals(build_signal_input(store, creator_identity_id))
    return {
        'creatorIdentityId': creator_identity_id,
        'signals': signals.to_dict(),
        'creator': to_creator_profile(signals, creator_identity_id),
    }
