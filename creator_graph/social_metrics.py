"""
social_metrics.py — Estimate per-platform reach and engagement for identities.

No platform API is called. For every platform an identity shows up on
(linked raw accounts, or outbound links on its stan page) a
SocialPlatformSignal is synthesized from:

  followers   — the largest follower estimate among the linked accounts
  avg views   — followers × platform view-rate prior × a small multiplier
                that grows with the number of corroborating accounts
  engagement  — platform prior + corrections for signal count / outbound link
  confidence  — which of the above were actually observed

Signals are upserted per (identity, platform); the downstream creators row,
when one exists, gets merged platform metrics and a weighted engagement.
"""

import json
import math
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlsplit

from creator_graph.config import clamp_int

log = logging.getLogger(__name__)

SIGNAL_SOURCE = 'identity_graph_estimate'

VIEW_RATE_PRIOR = {
    'instagram': 0.11,
    'tiktok': 0.23,
    'youtube': 0.18,
    'x': 0.07,
    'linkedin': 0.09,
    'unknown': 0.10,
}

ENGAGEMENT_PRIOR = {
    'instagram': 0.032,
    'tiktok': 0.053,
    'youtube': 0.041,
    'x': 0.017,
    'linkedin': 0.024,
    'unknown': 0.030,
}


@dataclass
class SocialPlatformSignal:
    platform: str
    followers_estimate: Optional[int]
    avg_views_estimate: Optional[int]
    engagement_rate_estimate: float
    sample_size: int
    data_quality: str
    confidence: float
    source: str = SIGNAL_SOURCE
    evidence: dict = field(default_factory=dict)

    def to_row(self, creator_identity_id: str) -> dict:
        return {
            'creator_identity_id': creator_identity_id,
            'platform': self.platform,
            'followers_estimate': self.followers_estimate,
            'avg_views_estimate': self.avg_views_estimate,
            'engagement_rate_estimate': self.engagement_rate_estimate,
            'sample_size': self.sample_size,
            'data_quality': self.data_quality,
            'source': self.source,
            'extraction_confidence': self.confidence,
            'evidence': self.evidence,
        }


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #

def _clamp(x: float, low: float = 0.0, high: float = 1.0) -> float:
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


def normalize_platform(value) -> Optional[str]:
    """Loose platform name / hostname → platform; None when unrecognised."""
    v = str(value or '').strip().lower()
    if not v:
        return None
    if 'insta' in v:
        return 'instagram'
    if 'tiktok' in v or v == 'tt':
        return 'tiktok'
    if 'youtube' in v or 'youtu' in v or v == 'yt':
        return 'youtube'
    if v == 'x' or 'x.com' in v or 'twitter' in v:
        return 'x'
    if 'linkedin' in v or v == 'in':
        return 'linkedin'
    if v == 'unknown':
        return 'unknown'
    return None


def platform_from_url(url: str) -> Optional[str]:
    try:
        host = urlsplit(str(url)).hostname
    except ValueError:
        return None
    return normalize_platform(host) if host else None


def as_string_list(value) -> list:
    """JSON columns arrive as lists or as JSON text depending on the client."""
    if not value:
        return []
    if isinstance(value, list):
        return [str(v) for v in value if v]
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return [value]
        if isinstance(parsed, list):
            return [str(v) for v in parsed if v]
        return [value]
    return []


def as_dict(value) -> dict:
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _uniq_lower(values) -> list:
    out = []
    for raw in values:
        v = str(raw or '').strip().lower()
        if v and v not in out:
            out.append(v)
    return out


# ------------------------------------------------------------------ #
# Signal synthesis
# ------------------------------------------------------------------ #

def data_quality_label(followers: Optional[float], signal_count: int, outbound_linked: bool) -> str:
    if followers and signal_count >= 2:
        return 'estimated_multi_signal'
    if followers:
        return 'estimated_single_signal'
    if outbound_linked:
        return 'platform_presence_only'
    return 'sparse'


def build_social_signal(platform: str, followers_estimate: Optional[float],
                        signal_count: int, outbound_linked: bool) -> SocialPlatformSignal:
    view_rate = VIEW_RATE_PRIOR.get(platform, VIEW_RATE_PRIOR['unknown'])
    er_base = ENGAGEMENT_PRIOR.get(platform, ENGAGEMENT_PRIOR['unknown'])

    has_followers = followers_estimate is not None and followers_estimate > 0
    n = max(0, int(round(signal_count)))
    sample_size = max(n, 1 if outbound_linked else 0)

    avg_views = None
    if has_followers:
        multiplier = min(1.3, 0.9 + n * 0.08)
        avg_views = max(1, int(round(followers_estimate * view_rate * multiplier)))

    engagement = _clamp(
        er_base + min(0.02, max(0, n - 1) * 0.003) + (0.002 if outbound_linked else 0),
        0.008,
        0.2,
    )

    confidence = 0.24
    if platform != 'unknown':
        confidence += 0.1
    if has_followers:
        confidence += 0.34
    if n >= 2:
        confidence += 0.14
    if n >= 4:
        confidence += 0.06
    if outbound_linked:
        confidence += 0.12
    if avg_views:
        confidence += 0.1
    confidence = _clamp(round(confidence, 3), 0.2, 0.95)

    return SocialPlatformSignal(
        platform=platform,
        followers_estimate=int(round(followers_estimate)) if has_followers else None,
        avg_views_estimate=avg_views,
        engagement_rate_estimate=round(engagement, 4),
        sample_size=sample_size,
        data_quality=data_quality_label(followers_estimate, n, outbound_linked),
        confidence=confidence,
        evidence={
            'signal_count': n,
            'outbound_linked': outbound_linked,
            'prior_view_rate': view_rate,
            'prior_engagement_rate': er_base,
        },
    )


def aggregate_account_signals(rows: list) -> dict:
    """{platform: (max followers, corroborating row count)} from linked accounts."""
    accounts: dict = {}
    for row in rows:
        platform = normalize_platform(str(row.get('platform') or 'unknown').lower()) or 'unknown'
        followers = _to_number(row.get('follower_count_estimate'))
        prev_followers, prev_count = accounts.get(platform, (None, 0))
        if prev_followers is not None:
            followers = max(prev_followers, followers or 0)
        accounts[platform] = (followers, prev_count + 1)
    return accounts


def weighted_engagement(signals: list) -> Optional[float]:
    """Confidence and reach weighted engagement across platforms, 4 dp."""
    weighted = 0.0
    total = 0.0
    for s in signals:
        if s.engagement_rate_estimate <= 0:
            continue
        reach = math.log10(s.followers_estimate + 10) if s.followers_estimate else 1
        w = max(0.2, s.confidence) * reach
        weighted += s.engagement_rate_estimate * w
        total += w
    if total <= 0:
        return None
    return round(weighted / total, 4)


def build_platform_metrics(signals: list) -> dict:
    out = {}
    for s in signals:
        if s.platform == 'unknown':
            continue
        entry = {
            'engagement_rate': s.engagement_rate_estimate,
            'confidence': s.confidence,
            'sample_size': s.sample_size,
            'source': s.source,
        }
        if s.followers_estimate is not None:
            entry['followers'] = s.followers_estimate
        if s.avg_views_estimate is not None:
            entry['avg_views'] = s.avg_views_estimate
        out[s.platform] = entry
    return out


def sync_creator_metrics(store, creator_identity_id: str, signals: list) -> Optional[str]:
    """Merge the signals into the downstream creators row; None when there is none."""
    creator = store.find_creator_by_identity(creator_identity_id)
    if not creator:
        return None

    metrics = as_dict(creator.get('metrics'))
    platform_metrics = {**as_dict(metrics.get('platform_metrics')), **build_platform_metrics(signals)}
    avg_confidence = (
        round(sum(s.confidence for s in signals) / len(signals), 4) if signals else None
    )
    metrics = {
        **metrics,
        'platform_metrics': platform_metrics,
        'social_performance': {
            'source': SIGNAL_SOURCE,
            'updated_at': datetime.now(timezone.utc).isoformat(),
            'platforms': len(signals),
            'avg_confidence': avg_confidence,
        },
    }

    existing = [normalize_platform(p) for p in as_string_list(creator.get('platforms'))]
    existing = [p for p in existing if p and p != 'unknown']
    inferred = [s.platform for s in signals if s.platform != 'unknown']

    store.update_creator(creator['id'], {
        'platforms': _uniq_lower(existing + inferred),
        'estimated_engagement': weighted_engagement(signals),
        'metrics': metrics,
    })
    return creator['id']


# ------------------------------------------------------------------ #
# Public interface
# ------------------------------------------------------------------ #

def enrich_social_metrics(store, creator_identity_id: Optional[str] = None,
                          limit: Optional[int] = 250, force: bool = False,
                          min_follower_estimate: Optional[float] = 0,
                          dry_run: bool = False) -> dict:
    limit = clamp_int(limit, 1, 10_000, 250)
    min_followers = max(0, int(round(min_follower_estimate or 0)))
    stats = {
        'selected': 0,
        'processed': 0,
        'enriched': 0,
        'updated': 0,
        'skippedNoSignals': 0,
        'skippedLowFollowers': 0,
        'failed': 0,
    }
    results = []

    identities = store.select_social_identities(creator_identity_id, limit, force)
    stats['selected'] = len(identities)
    log.info(f'Social enrichment: {len(identities)} identities selected (dry_run={dry_run})')

    for identity in identities:
        stats['processed'] += 1
        identity_id = identity['id']
        try:
            accounts = aggregate_account_signals(store.fetch_account_signals(identity_id))
            outbound = {
                p for p in (platform_from_url(u) for u in as_string_list(identity.get('outbound_socials')))
                if p
            }
            candidates = _uniq_lower(list(accounts) + sorted(outbound))

            if not candidates:
                stats['skippedNoSignals'] += 1
                results.append({
                    'creatorIdentityId': identity_id,
                    'status': 'skipped',
                    'reason': 'no social account signals found',
                })
                continue

            filtered_low = 0
            signals = []
            for platform in candidates:
                followers, count = accounts.get(platform, (None, 0))
                if min_followers > 0 and followers is not None and 0 < followers < min_followers:
                    filtered_low += 1
                    continue
                linked = platform in outbound
                if count <= 0 and not linked:
                    continue
                signals.append(build_social_signal(platform, followers, count, linked))

            if not signals:
                stats['skippedLowFollowers'] += 1
                results.append({
                    'creatorIdentityId': identity_id,
                    'status': 'skipped',
                    'reason': (
                        'all signals filtered by minFollowerEstimate' if filtered_low
                        else 'insufficient social signals after filtering'
                    ),
                })
                continue

            synced_creator_id = None
            if not dry_run:
                for signal in signals:
                    store.upsert_social_signal(signal.to_row(identity_id))
                synced_creator_id = sync_creator_metrics(store, identity_id, signals)

            status = 'updated' if identity.get('has_existing_social') else 'enriched'
            stats[status] += 1
            results.append({
                'creatorIdentityId': identity_id,
                'status': status,
                'platformCount': len(signals),
                'syncedCreatorId': synced_creator_id,
            })
        except Exception as e:
            log.warning(f'Social enrichment failed for {identity_id}: {e}')
            stats['failed'] += 1
            results.append({
                'creatorIdentityId': identity_id,
                'status': 'failed',
                'reason': str(e) or 'unknown error',
            })

    log.info(f'Social enrichment done: {stats}')
    return {
        'dryRun': dry_run,
        'filters': {
            'creatorIdentityId': creator_identity_id,
            'force': force,
            'limit': limit,
            'minFollowerEstimate': min_followers,
        },
        'stats': stats,
        'results': results,
    }
