"""
resolve.py — Merge raw accounts into canonical creator identities.

Anchor priority for each unlinked raw account:
  1  stan slug on the account itself             → reason stan_slug
  2  stan slug mentioned in title/snippet/raw    → reason cross_link_stan_slug
  3  personal domain of the source URL           → reason personal_domain
  4  personal domain mentioned in title/snippet/raw → reason cross_link_personal_domain

An anchor finds or creates the identity and the account is linked to it.
Without any anchor the account is queued as a merge candidate (never
dropped), with a suggestion when the same handle is already linked on
another platform.

Identity creation is insert-then-reread: a unique violation means another
worker created the same anchor first, so its row is reused.
"""

import re
import json
import logging
from typing import Optional
from urllib.parse import urlsplit

from creator_graph.config import clamp_int
from database.store import UniqueViolation, new_id

log = logging.getLogger(__name__)

SOCIAL_DOMAINS = {
    'x.com', 'twitter.com', 'instagram.com', 'linkedin.com',
    'tiktok.com', 'youtube.com', 'youtu.be', 'stan.store',
}
EXCLUDED_DOMAINS = {'google.com', 'serpapi.com', 'gstatic.com', 'ytimg.com'}

CANDIDATE_REASON = 'missing deterministic anchor (stan_slug/personal_domain/cross-link)'

_URL_RE = re.compile(r'https?://[^\s)]+', re.IGNORECASE)
_URL_TRAIL_RE = re.compile(r'[.,;:!?]+$')
_BARE_DOMAIN_RE = re.compile(r'\b([a-z0-9-]+\.[a-z]{2,})(?:/[^\s]*)?', re.IGNORECASE)
_STAN_SLUG_RE = re.compile(r'stan\.store/([a-zA-Z0-9._-]+)', re.IGNORECASE)


# ------------------------------------------------------------------ #
# Anchors
# ------------------------------------------------------------------ #

def normalize_domain(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    host = re.sub(r'^www\.', '', raw.lower()).strip()
    if not host or '.' not in host:
        return None
    return host


def _url_domain(url: str) -> Optional[str]:
    try:
        return normalize_domain(urlsplit(url).hostname)
    except ValueError:
        return None


def _qualifies(host: Optional[str]) -> bool:
    return bool(host) and host not in SOCIAL_DOMAINS and host not in EXCLUDED_DOMAINS


def personal_domain_from_text(text: str) -> Optional[str]:
    """First non-social, non-search host of an embedded URL, else a bare domain token."""
    text = text or ''
    seen = set()
    for m in _URL_RE.finditer(text):
        url = _URL_TRAIL_RE.sub('', m.group(0))
        if url in seen:
            continue
        seen.add(url)
        host = _url_domain(url)
        if _qualifies(host):
            return host

    bare = _BARE_DOMAIN_RE.search(text)
    if not bare:
        return None
    host = normalize_domain(bare.group(1))
    return host if _qualifies(host) else None


def stan_slug_from_text(text: str) -> Optional[str]:
    m = _STAN_SLUG_RE.search(text or '')
    return m.group(1).lower() if m else None


def cross_link_text(account: dict) -> str:
    raw = account.get('raw')
    raw_text = raw if isinstance(raw, str) else json.dumps(raw or {}, default=str)
    return '\n'.join([account.get('title') or '', account.get('snippet') or '', raw_text])


def anchors_for(account: dict) -> dict:
    """Direct and cross-link anchors for one raw account."""
    text = cross_link_text(account)
    direct_slug = (account.get('stan_slug') or '').lower() or None
    cross_slug = stan_slug_from_text(text)
    direct_domain = personal_domain_from_text(account.get('source_url') or '')
    cross_domain = personal_domain_from_text(text)
    return {
        'direct_slug': direct_slug,
        'cross_slug': cross_slug,
        'direct_domain': direct_domain,
        'cross_domain': cross_domain,
        'stan_slug': direct_slug or cross_slug,
        'personal_domain': direct_domain or cross_domain,
    }


# ------------------------------------------------------------------ #
# Identity lookups
# ------------------------------------------------------------------ #

def create_identity(store, stan_slug: Optional[str] = None,
                    personal_domain: Optional[str] = None) -> str:
    """Insert a new identity; on a unique violation reuse whichever row won."""
    identity_id = new_id('ci')
    try:
        return store.insert_identity(identity_id, stan_slug, personal_domain)
    except UniqueViolation:
        if stan_slug:
            existing = store.find_identity_by_stan_slug(stan_slug)
            if existing:
                log.debug(f'Identity for slug {stan_slug} created concurrently, reusing {existing}')
                return existing
        if personal_domain:
            existing = store.find_identity_by_domain(personal_domain)
            if existing:
                log.debug(f'Identity for domain {personal_domain} created concurrently, reusing {existing}')
                return existing
        raise


def _link(store, identity_id: str, account: dict, reason: str,
          personal_domain: Optional[str]) -> None:
    store.link_account({
        'creator_identity_id': identity_id,
        'raw_account_id': account['id'],
        'platform': account.get('platform'),
        'handle': account.get('handle'),
        'normalized_profile_url': account.get('normalized_profile_url'),
        'source_url': account.get('source_url'),
        'stan_slug': account.get('stan_slug'),
        'personal_domain': personal_domain,
        'linkage_reason': reason,
    })


def _queue_candidate(store, account: dict) -> None:
    handle = account.get('handle')
    candidate_id = None
    if handle:
        candidate_id = store.find_candidate_by_handle(handle, account.get('platform') or 'unknown')

    store.upsert_merge_candidate({
        'raw_account_id': account['id'],
        'discovery_run_id': account.get('discovery_run_id'),
        'candidate_identity_id': candidate_id,
        'reason': CANDIDATE_REASON,
        'confidence': 0.55 if candidate_id else 0.3,
        'meta': {'handle': handle, 'platform': account.get('platform')},
    })


# ------------------------------------------------------------------ #
# Public interface
# ------------------------------------------------------------------ #

def resolve_identities(store, discovery_run_id: Optional[str] = None,
                       limit: Optional[int] = 500) -> dict:
    """Link every unlinked raw account (oldest first, up to `limit`)."""
    stats = {
        'processed': 0,
        'createdIdentities': 0,
        'mergedByStanSlug': 0,
        'mergedByPersonalDomain': 0,
        'mergedByCrossLink': 0,
        'alreadyLinked': 0,
        'queuedCandidates': 0,
    }
    accounts = store.fetch_unlinked_raw_accounts(discovery_run_id, clamp_int(limit, 1, 100_000, 500))
    log.info(f'Resolving {len(accounts)} unlinked raw accounts (run={discovery_run_id or "all"})')

    for account in accounts:
        stats['processed'] += 1
        a = anchors_for(account)
        identity_id = None
        reason = None

        if a['stan_slug']:
            identity_id = store.find_identity_by_stan_slug(a['stan_slug'])
            if not identity_id:
                identity_id = create_identity(store, a['stan_slug'], a['personal_domain'])
                stats['createdIdentities'] += 1
            if a['direct_slug']:
                reason = 'stan_slug'
                stats['mergedByStanSlug'] += 1
            else:
                reason = 'cross_link_stan_slug'
                stats['mergedByCrossLink'] += 1
        elif a['personal_domain']:
            identity_id = store.find_identity_by_domain(a['personal_domain'])
            if not identity_id:
                identity_id = create_identity(store, None, a['personal_domain'])
                stats['createdIdentities'] += 1
            if a['direct_domain']:
                reason = 'personal_domain'
                stats['mergedByPersonalDomain'] += 1
            else:
                reason = 'cross_link_personal_domain'
                stats['mergedByCrossLink'] += 1

        if identity_id:
            _link(store, identity_id, account, reason, a['personal_domain'])
            continue

        _queue_candidate(store, account)
        stats['queuedCandidates'] += 1

    stats['alreadyLinked'] = store.count_linked_raw_accounts(discovery_run_id)
    log.info(f'Resolution done: {stats}')
    return {'discoveryRunId': discovery_run_id, 'stats': stats}
