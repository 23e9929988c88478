"""
stan_enrich.py — Crawl stan.store pages for resolved identities.

Flow:
  1  store.select_stan_identities()  → by id / slug / discovery run / latest
  2  skip identities without a slug, and already-enriched ones unless force
  3  one browser for the batch (launched on first crawl, always closed);
     one tab per identity, closed after extraction whatever happens
  4  CAPTURE_JS → stan_page.snapshot_from_page_state → extract_stan_signals
  5  upsert creator_stan_profiles (skipped on dry_run)

A failing page marks that identity failed and the batch carries on.
"""

import time
import logging
from typing import Callable, Optional
from urllib.parse import quote

from selenium.common.exceptions import TimeoutException
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait

from creator_graph.config import clamp_int, default_browser
from creator_graph.stan_page import (
    StanSignals,
    extract_stan_signals,
    normalize_slug,
    snapshot_from_page_state,
)
from scrapers.browser import BrowserSession, normalize_browser

log = logging.getLogger(__name__)

STAN_BASE_URL = 'https://stan.store'
DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_WAIT_AFTER_LOAD_MS = 1_200
READY_SELECTOR = '.store-header, .store-layout'

# Raw capture only; cleaning, card filtering and price formatting happen in stan_page.py
CAPTURE_JS = """
var text = function (el) { return el ? (el.textContent || '') : null; };
var attr = function (el, name) { return el ? el.getAttribute(name) : null; };
var abs = function (value) {
  if (!value) return null;
  try { return new URL(value, window.location.href).toString(); } catch (e) { return null; }
};
var all = function (selector) { return Array.from(document.querySelectorAll(selector)); };

var nuxtPages = [];
try {
  var pages = window.__NUXT__ && window.__NUXT__.data && window.__NUXT__.data[0]
    && window.__NUXT__.data[0].store && window.__NUXT__.data[0].store.pages;
  if (Array.isArray(pages)) { nuxtPages = JSON.parse(JSON.stringify(pages)); }
} catch (e) {}

return {
  finalUrl: window.location.href,
  pageTitle: document.title,
  metaDescription: attr(document.querySelector('meta[name="description"]'), 'content'),
  ogImage: abs(attr(document.querySelector('meta[property="og:image"]'), 'content')),
  fullName: text(document.querySelector('.store-header__fullname')),
  bio: text(document.querySelector('.store-header__bio')),
  headerImageUrl: abs(attr(document.querySelector('.store-header__image img'), 'src')),
  socialLinks: all('.social-icons a[href]').map(function (el) { return abs(el.getAttribute('href')); }),
  anchorLinks: all('.store-header a[href], .store-content a[href]').map(function (el) { return abs(el.getAttribute('href')); }),
  calloutBlocks: all('.block.block--callout').map(function (b) {
    return {
      title: text(b.querySelector('.block__heading')),
      description: text(b.querySelector('.block__subheading')),
      price: text(b.querySelector('.product-price .amount')),
      cta: text(b.querySelector('.cta-button__label')),
      imageUrl: abs(attr(b.querySelector('.block__image img'), 'src')),
      href: abs(attr(b.querySelector('a[href]'), 'href'))
    };
  }),
  pillBlocks: all('.block.block--pill').map(function (b) {
    return {
      title: text(b.querySelector('.block__text--pill')),
      cta: text(b.querySelector('button .cta-button__label')),
      imageUrl: abs(attr(b.querySelector('.block__image--pill img'), 'src')),
      href: abs(attr(b.querySelector('a[href]'), 'href'))
    };
  }),
  nuxtPages: nuxtPages,
  contentImages: all('.store-content img[src], .store-header img[src]').map(function (el) { return abs(el.getAttribute('src')); }),
  bodyText: document.body ? document.body.innerText : '',
  htmlLength: document.documentElement ? document.documentElement.outerHTML.length : 0
};
"""


class StanPageCrawler:
    """Loads one stan.store page per call in its own tab of a shared BrowserSession."""

    def __init__(self, session: BrowserSession, timeout_ms: int = DEFAULT_TIMEOUT_MS,
                 wait_after_load_ms: int = DEFAULT_WAIT_AFTER_LOAD_MS,
                 sleep: Callable[[float], None] = time.sleep):
        self.session = session
        self.timeout_ms = timeout_ms
        self.wait_after_load_ms = wait_after_load_ms
        self._sleep = sleep

    def capture(self, stan_slug: str) -> dict:
        """Navigate to the store and return the raw page state."""
        with self.session.new_tab() as driver:
            driver.set_page_load_timeout(self.timeout_ms / 1000.0)
            driver.get(f'{STAN_BASE_URL}/{quote(stan_slug, safe="")}')
            if self.wait_after_load_ms:
                self._sleep(self.wait_after_load_ms / 1000.0)
            try:
                WebDriverWait(driver, min(8_000, self.timeout_ms) / 1000.0).until(
                    EC.presence_of_element_located((By.CSS_SELECTOR, READY_SELECTOR))
                )
            except TimeoutException:
                log.debug(f'{stan_slug}: store header never rendered, capturing anyway')
            return driver.execute_script(CAPTURE_JS) or {}

    def crawl(self, stan_slug: str) -> tuple[str, StanSignals]:
        """Return (final_url, signals) for one slug."""
        snapshot = snapshot_from_page_state(self.capture(stan_slug))
        return snapshot.final_url, extract_stan_signals(snapshot, stan_slug)


def _profile_row(identity_id: str, slug: str, stan_url: str, signals: StanSignals) -> dict:
    return {
        'creator_identity_id': identity_id,
        'stan_slug': slug,
        'stan_url': stan_url,
        'profile_name': signals.profile_name,
        'profile_handle': signals.profile_handle,
        'bio_description': signals.bio_description,
        'offers': signals.offers,
        'offer_cards': [c.to_dict() for c in signals.offer_cards],
        'offer_image_urls': signals.offer_image_urls,
        'header_image_url': signals.header_image_url,
        'pricing_points': signals.pricing_points,
        'product_types': signals.product_types,
        'outbound_socials': signals.outbound_socials,
        'email': signals.email,
        'cta_style': signals.cta_style,
        'source_text': signals.source_text,
        'source_html_len': signals.source_html_len,
        'extracted_confidence': signals.extracted_confidence,
    }


def enrich_stan_profiles(store, discovery_run_id: Optional[str] = None,
                         creator_identity_id: Optional[str] = None,
                         stan_slug: Optional[str] = None,
                         limit: Optional[int] = 100,
                         force: bool = False,
                         dry_run: bool = False,
                         browser: Optional[str] = None,
                         headless: bool = True,
                         timeout_ms: Optional[int] = DEFAULT_TIMEOUT_MS,
                         wait_after_load_ms: Optional[int] = DEFAULT_WAIT_AFTER_LOAD_MS,
                         session: Optional[BrowserSession] = None,
                         session_factory: Callable[..., BrowserSession] = BrowserSession.launch,
                         sleep: Callable[[float], None] = time.sleep) -> dict:
    """
    Enrich stan profiles for a batch of identities.

    A caller-supplied `session` is used as-is and left open; otherwise one is
    launched on the first crawl and closed before returning.
    """
    limit = clamp_int(limit, 1, 1_000, 100)
    timeout_ms = clamp_int(timeout_ms, 3_000, 120_000, DEFAULT_TIMEOUT_MS)
    wait_after_load_ms = clamp_int(wait_after_load_ms, 0, 30_000, DEFAULT_WAIT_AFTER_LOAD_MS)
    requested_browser = normalize_browser(browser or default_browser('CREATOR_STAN_ENRICH_BROWSER'))
    slug_filter = normalize_slug(stan_slug) if stan_slug else None

    stats = {
        'selected': 0,
        'processed': 0,
        'enriched': 0,
        'updated': 0,
        'skippedNoSlug': 0,
        'skippedExisting': 0,
        'failed': 0,
    }
    warnings: list[str] = []
    results: list[dict] = []

    identities = store.select_stan_identities(
        creator_identity_id=creator_identity_id,
        stan_slug=slug_filter,
        discovery_run_id=discovery_run_id,
        limit=limit,
    )
    stats['selected'] = len(identities)
    log.info(f'Stan enrichment: {len(identities)} identities selected (force={force}, dry_run={dry_run})')

    owned = session is None
    crawler = None
    browser_used = session.browser_name if session else requested_browser

    try:
        for identity in identities:
            stats['processed'] += 1
            slug = normalize_slug(identity.get('canonical_stan_slug')) or None

            if not slug:
                stats['skippedNoSlug'] += 1
                results.append({
                    'creatorIdentityId': identity['id'],
                    'stanSlug': None,
                    'status': 'skipped',
                    'reason': 'identity missing canonical_stan_slug',
                })
                continue

            if identity.get('has_existing_profile') and not force:
                stats['skippedExisting'] += 1
                results.append({
                    'creatorIdentityId': identity['id'],
                    'stanSlug': slug,
                    'status': 'skipped',
                    'reason': 'profile already enriched; use force=true',
                })
                continue

            if crawler is None:
                if session is None:
                    session = session_factory(requested_browser, headless=headless)
                    browser_used = session.browser_name
                    if session.warning:
                        warnings.append(session.warning)
                crawler = StanPageCrawler(session, timeout_ms, wait_after_load_ms, sleep=sleep)

            log.info(f'Processing: {slug} ({identity["id"]})')
            try:
                final_url, signals = crawler.crawl(slug)
                if not dry_run:
                    store.upsert_stan_profile(_profile_row(identity['id'], slug, final_url, signals))

                status = 'updated' if identity.get('has_existing_profile') else 'enriched'
                stats[status] += 1
                results.append({
                    'creatorIdentityId': identity['id'],
                    'stanSlug': slug,
                    'status': status,
                    'profileName': signals.profile_name,
                    'profileHandle': signals.profile_handle,
                    'confidence': signals.extracted_confidence,
                    'offersFound': len(signals.offers),
                    'pricesFound': len(signals.pricing_points),
                    'socialsFound': len(signals.outbound_socials),
                    'headerImageUrl': signals.header_image_url,
                })
            except Exception as e:
                log.warning(f'  {slug}: crawl failed: {e}')
                stats['failed'] += 1
                results.append({
                    'creatorIdentityId': identity['id'],
                    'stanSlug': slug,
                    'status': 'failed',
                    'reason': str(e) or 'stan page crawl failed',
                })
    finally:
        if owned and session is not None:
            session.close()

    log.info(f'Stan enrichment done: {stats}')
    return {
        'config': {
            'discoveryRunId': discovery_run_id,
            'creatorIdentityId': creator_identity_id,
            'stanSlug': slug_filter,
            'limit': limit,
            'force': force,
            'dryRun': dry_run,
            'requestedBrowser': requested_browser,
            'browserUsed': browser_used,
            'headless': headless,
            'timeoutMs': timeout_ms,
            'waitAfterLoadMs': wait_after_load_ms,
        },
        'warnings': warnings,
        'stats': stats,
        'results': results,
    }
