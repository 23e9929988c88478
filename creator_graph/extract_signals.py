"""
extract_signals.py — Re-mine stored raw accounts for discovery signals.

Ingestion keeps only the first slug / follower count per result. This pass
looks at every string attached to a raw account (URL, title, snippet, the
provider payload) and records:

  - every stan.store URL mentioned (first one is the slug)
  - the largest follower count plus the phrases it came from
  - the platform profile URL and handle, mined from text when the source
    URL is a post rather than a profile
  - an Instagram profile / handle, whatever the account's own platform

Results go to raw_account_extractions keyed (raw_account_id, extractor_version).
Dry-run is the default: nothing is written unless dry_run=False.
"""

import re
import logging
from typing import Iterable, Optional

from creator_graph.config import clamp_int
from creator_graph.normalize import (
    PLATFORMS,
    extract_stan_urls,
    follower_mentions,
    handle_from_profile_url,
    normalize,
    profile_url_from_handle,
    recover_handle,
    searchable_texts,
)

log = logging.getLogger(__name__)

MAX_TEXTS = 220
_IG_RESERVED = {'p', 'reel', 'reels', 'explore', 'stories', 'accounts', 'about'}
_X_RESERVED = {'home', 'search', 'explore', 'i', 'intent', 'settings'}

_PROFILE_PATTERNS = {
    'instagram': re.compile(r'https?://(?:www\.)?instagram\.com/([a-zA-Z0-9._]+)/?', re.IGNORECASE),
    'x':         re.compile(r'https?://(?:www\.)?(x\.com|twitter\.com)/([a-zA-Z0-9_]+)/?', re.IGNORECASE),
    'linkedin':  re.compile(r'https?://(?:[\w-]+\.)?linkedin\.com/(in|company)/([a-zA-Z0-9_%\-]+)/?', re.IGNORECASE),
    'tiktok':    re.compile(r'https?://(?:www\.)?tiktok\.com/(@[a-zA-Z0-9._]+)/?', re.IGNORECASE),
    'youtube':   re.compile(
        r'https?://(?:www\.)?youtube\.com/(@[\w.-]+|channel/[\w-]+|c/[\w.-]+|user/[\w.-]+)/?',
        re.IGNORECASE,
    ),
}
_IG_MENTION_RE = re.compile(r'(?<!\w)@([a-zA-Z0-9._]{2,})')


def _to_platform(value) -> str:
    v = str(value or '').strip().lower()
    if v == 'twitter':
        return 'x'
    return v if v in PLATFORMS else 'unknown'


def profile_from_texts(texts: Iterable[str], platform: str) -> Optional[str]:
    """First canonical profile URL for `platform` linked anywhere in the texts."""
    pattern = _PROFILE_PATTERNS.get(platform)
    if pattern is None:
        return None
    for text in texts:
        for m in pattern.finditer(text or ''):
            if platform == 'instagram':
                first = m.group(1).lower()
                if first not in _IG_RESERVED:
                    return f'https://instagram.com/{first}'
            elif platform == 'x':
                first = m.group(2).lower()
                if first not in _X_RESERVED:
                    host = 'twitter.com' if 'twitter.com' in m.group(1).lower() else 'x.com'
                    return f'https://{host}/{first}'
            elif platform == 'linkedin':
                return f'https://linkedin.com/{m.group(1).lower()}/{m.group(2)}'
            elif platform == 'tiktok':
                return f'https://tiktok.com/{m.group(1)}'
            elif platform == 'youtube':
                return f'https://youtube.com/{m.group(1)}'
    return None


def instagram_profile_from_texts(texts: Iterable[str]) -> tuple[Optional[str], Optional[str]]:
    for text in texts:
        for m in _PROFILE_PATTERNS['instagram'].finditer(text or ''):
            first = m.group(1)
            if first.lower() not in _IG_RESERVED:
                return f'https://instagram.com/{first}', first
    return None, None


def instagram_mention(texts: Iterable[str]) -> Optional[str]:
    for text in texts:
        for m in _IG_MENTION_RE.finditer(text or ''):
            if m.group(1).lower() not in _IG_RESERVED:
                return m.group(1)
    return None


def _confidence(stan_slug, followers, profile_url, handle, ig_url, ig_handle) -> float:
    score = 0.1
    if stan_slug:
        score += 0.38
    if followers:
        score += 0.2
    if profile_url:
        score += 0.16
    if handle:
        score += 0.1
    if ig_url:
        score += 0.04
    if ig_handle:
        score += 0.02
    return round(max(0.0, min(1.0, score)), 3)


def extract_account_signals(row: dict) -> dict:
    """Signals for one raw_accounts row (id, discovery_run_id, platform, source_url, title, snippet, raw)."""
    normalized = normalize(row.get('source_url'), row.get('title') or '', row.get('snippet') or '', row.get('raw'))
    stored_platform = _to_platform(row.get('platform'))
    platform = normalized.platform if normalized and normalized.platform != 'unknown' else stored_platform

    texts = searchable_texts(row.get('source_url'), row.get('title'), row.get('snippet'),
                             row.get('raw'), cap=MAX_TEXTS)
    stan_urls = extract_stan_urls(texts, cap=10)
    stan_url = stan_urls[0] if stan_urls else None
    stan_slug = stan_url.rsplit('/', 1)[-1].lower() if stan_url else None
    followers, mentions = follower_mentions(texts)

    same_platform = normalized is not None and normalized.platform == platform
    profile_url = normalized.normalized_profile_url if same_platform else None
    if not profile_url:
        profile_url = profile_from_texts(texts, platform)

    handle = normalized.handle if same_platform else None
    if not handle:
        handle = handle_from_profile_url(profile_url, platform)
    text_handle = recover_handle(texts, platform)
    if not handle and text_handle:
        handle = text_handle
    if not profile_url and handle:
        profile_url = profile_url_from_handle(platform, handle)
    if platform == 'youtube' and text_handle and profile_url and '/channel/' in profile_url:
        handle = text_handle
        profile_url = profile_url_from_handle('youtube', text_handle)

    ig_text_url, ig_text_handle = instagram_profile_from_texts(texts)
    if platform == 'instagram':
        ig_url = profile_url or ig_text_url
        ig_handle = handle or ig_text_handle or instagram_mention(texts)
    else:
        ig_url = ig_text_url
        ig_handle = ig_text_handle or instagram_mention(texts)

    signals = []
    if stan_slug:
        signals.append('stan_slug')
    if followers:
        signals.append('followers')
    if profile_url:
        signals.append(f'{platform}_profile_url')
    if handle:
        signals.append(f'{platform}_handle')
    if ig_url:
        signals.append('instagram_profile_url')
    if ig_handle:
        signals.append('instagram_handle')

    return {
        'rawAccountId': row.get('id'),
        'discoveryRunId': row.get('discovery_run_id'),
        'platform': platform,
        'sourceUrl': row.get('source_url'),
        'stanUrl': stan_url,
        'stanSlug': stan_slug,
        'allStanUrls': stan_urls,
        'followerCountEstimate': followers,
        'platformProfileUrl': profile_url,
        'platformHandle': handle,
        'instagramProfileUrl': ig_url,
        'instagramHandle': ig_handle,
        'confidence': _confidence(stan_slug, followers, profile_url, handle, ig_url, ig_handle),
        'signals': signals,
        'evidence': {
            'stan_urls': stan_urls,
            'follower_mentions': mentions,
            'sampled_texts': texts[:12],
        },
    }


def _extraction_row(extraction: dict, extractor_version: str) -> dict:
    return {
        'raw_account_id': extraction['rawAccountId'],
        'discovery_run_id': extraction['discoveryRunId'],
        'platform': extraction['platform'],
        'extractor_version': extractor_version,
        'stan_url': extraction['stanUrl'],
        'stan_slug': extraction['stanSlug'],
        'all_stan_urls': extraction['allStanUrls'],
        'follower_count_estimate': extraction['followerCountEstimate'],
        'platform_profile_url': extraction['platformProfileUrl'],
        'platform_handle': extraction['platformHandle'],
        'instagram_profile_url': extraction['instagramProfileUrl'],
        'instagram_handle': extraction['instagramHandle'],
        'extraction_confidence': extraction['confidence'],
        'evidence': {**extraction['evidence'], 'signals': extraction['signals']},
    }


def extract_raw_accounts(store, discovery_run_id: Optional[str] = None,
                         platform: Optional[str] = None,
                         raw_account_ids: Optional[list] = None,
                         limit: Optional[int] = 500,
                         preview_limit: Optional[int] = 40,
                         dry_run: bool = True,
                         extractor_version: str = 'v1') -> dict:
    """Run extract_account_signals over a batch of raw accounts."""
    version = (extractor_version or 'v1').strip() or 'v1'
    limit = clamp_int(limit, 1, 20_000, 500)
    preview_limit = clamp_int(preview_limit, 1, 500, 40)

    ids = []
    for raw_id in raw_account_ids or []:
        v = str(raw_id or '').strip()
        if v and v not in ids:
            ids.append(v)
    ids = ids[:5000]

    platform_filter = str(platform or '').strip().lower() or None
    if platform_filter and platform_filter not in PLATFORMS + ('unknown',):
        platform_filter = None

    if discovery_run_id:
        run_id = discovery_run_id.strip()
    elif ids:
        run_id = None
    else:
        run_id = store.latest_discovery_run_id()

    rows = store.select_raw_accounts(run_id, platform_filter, ids, limit)
    stats = {
        'selected': len(rows),
        'processed': 0,
        'persisted': 0,
        'withStanSlug': 0,
        'withFollowerCount': 0,
        'withPlatformProfile': 0,
        'withInstagramProfile': 0,
        'failed': 0,
    }
    preview = []
    log.info(f'Extracting signals from {len(rows)} raw accounts (run={run_id}, dry_run={dry_run})')

    for row in rows:
        try:
            extraction = extract_account_signals(row)
            stats['processed'] += 1
            if extraction['stanSlug']:
                stats['withStanSlug'] += 1
            if extraction['followerCountEstimate'] is not None:
                stats['withFollowerCount'] += 1
            if extraction['platformProfileUrl']:
                stats['withPlatformProfile'] += 1
            if extraction['instagramProfileUrl']:
                stats['withInstagramProfile'] += 1

            if not dry_run:
                store.upsert_raw_account_extraction(_extraction_row(extraction, version))
                stats['persisted'] += 1

            if len(preview) < preview_limit:
                preview.append({k: v for k, v in extraction.items() if k != 'discoveryRunId'})
        except Exception as e:
            log.warning(f'Extraction failed for {row.get("id")}: {e}')
            stats['failed'] += 1

    return {
        'discoveryRunId': run_id,
        'extractorVersion': version,
        'dryRun': dry_run,
        'stats': stats,
        'preview': preview,
    }
