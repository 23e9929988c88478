"""
engines.py — Search backends used by the crawl agents.

Engines:
  serpapi     — SerpAPI JSON endpoint over requests (needs SERP_API_KEY)
  google      — google.com/search in a Selenium-driven browser
  duckduckgo  — html.duckduckgo.com in the same browser (fallback)
  auto        — serpapi when a key is configured, else google with a
                duckduckgo fallback when Google is blocked or returns nothing

resolve_engine() picks the engine without touching the network. Each engine
exposes search(query, num) -> SearchOutcome with cleaned, canonical rows.
"""

import re
import time
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional
from urllib.parse import urlsplit, urlunsplit, parse_qs, parse_qsl, urlencode

import requests
from selenium.webdriver.common.by import By
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from creator_graph.errors import ConfigurationError, SearchError
from creator_graph.normalize import parse_http_url

log = logging.getLogger(__name__)

ENGINES = ('auto', 'serpapi', 'google', 'duckduckgo')

SERPAPI_ENDPOINT = 'https://serpapi.com/search.json'
GOOGLE_SEARCH_URL = 'https://www.google.com/search'
DUCKDUCKGO_SEARCH_URL = 'https://html.duckduckgo.com/html/'

TITLE_CAP = 220
SNIPPET_CAP = 420

_BLOCK_PHRASES = (
    'detected unusual traffic',
    'our systems have detected unusual traffic',
    'sorry, but your computer or network may be sending automated queries',
    'captcha',
)
_CONSENT_LABELS = ('accept all', 'i agree', 'accept', 'agree', 'got it')
_NON_PAGE_RE = re.compile(r'\.(pdf|jpg|jpeg|png|webp|svg|gif|zip|mp4|mov)$')
_TRACKING_PARAMS = {'fbclid', 'gclid', 'si'}

_GOOGLE_ROWS_JS = """
return Array.from(document.querySelectorAll('div.g')).map(function (node) {
  var a = node.querySelector('a[href]');
  var h3 = node.querySelector('h3');
  var sn = node.querySelector('div.VwiC3b') || node.querySelector('span.aCOpRe')
        || node.querySelector("div[data-sncf='1']");
  return {
    href: a ? (a.getAttribute('href') || '') : '',
    title: h3 ? (h3.textContent || '').trim() : '',
    snippet: sn ? (sn.textContent || '').trim() : ''
  };
});
"""

_DUCKDUCKGO_ROWS_JS = """
return Array.from(document.querySelectorAll('.result')).map(function (node) {
  var a = node.querySelector('a.result__a') || node.querySelector('a[href]');
  var sn = node.querySelector('.result__snippet');
  return {
    href: a ? (a.getAttribute('href') || '') : '',
    title: a ? (a.textContent || '').trim() : '',
    snippet: sn ? (sn.textContent || '').trim() : ''
  };
});
"""


@dataclass
class SerpRow:
    href: str
    title: str
    snippet: str
    engine: str
    provider_raw: Optional[dict] = None


@dataclass
class SearchOutcome:
    rows: list = field(default_factory=list)
    blocked: bool = False


# ------------------------------------------------------------------ #
# Engine selection
# ------------------------------------------------------------------ #

def resolve_engine(requested: Optional[str], serp_api_key: Optional[str]) -> str:
    """
    Map the requested engine to the one that will actually run.

    Raises ConfigurationError for serpapi without a key or an unknown name.
    """
    engine = (requested or 'auto').strip().lower()
    if engine not in ENGINES:
        raise ConfigurationError(f'Unknown search engine: {requested!r} (expected one of {", ".join(ENGINES)})')
    if engine == 'serpapi' and not serp_api_key:
        raise ConfigurationError('SERP_API_KEY is required when engine=serpapi')
    if engine == 'auto' and serp_api_key:
        return 'serpapi'
    return engine


# ------------------------------------------------------------------ #
# Row hygiene
# ------------------------------------------------------------------ #

def clean_text(value, cap: int = 450) -> str:
    text = str(value or '').replace('\xa0', ' ').replace('\r', '')
    text = re.sub(r'[ \t]+\n', '\n', text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()[:cap]


def is_page_like_url(url: str) -> bool:
    parts = parse_http_url(url)
    if not parts:
        return False
    return not _NON_PAGE_RE.search(parts.path.lower())


def is_google_host(url: str) -> bool:
    parts = parse_http_url(url)
    if not parts:
        return False
    host = parts.hostname.lower()
    return host == 'google.com' or host.endswith('.google.com') or host.endswith('.googleusercontent.com')


def canonicalize_url(raw_url: str) -> str:
    """Drop the fragment and tracking params (utm_*, fbclid, gclid, si)."""
    try:
        parts = urlsplit(raw_url)
    except ValueError:
        return raw_url
    kept = [
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if not k.lower().startswith('utm_') and k.lower() not in _TRACKING_PARAMS
    ]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), ''))


def normalize_google_href(href: str) -> Optional[str]:
    """Unwrap Google's /url?q= redirect; keep absolute http(s) links as-is."""
    raw = str(href or '').strip()
    if not raw:
        return None
    if raw.startswith('/url?') or raw.startswith('https://www.google.com/url?'):
        target = parse_qs(raw.split('?', 1)[1]).get('q', [''])[0]
        return target or None
    if re.match(r'^https?://', raw, re.IGNORECASE):
        return raw
    return None


def normalize_duckduckgo_href(href: str) -> Optional[str]:
    """Unwrap DuckDuckGo's /l/?uddg= redirect."""
    raw = str(href or '').strip()
    if not raw:
        return None
    if raw.startswith('//'):
        raw = 'https:' + raw
    parts = parse_http_url(raw)
    if parts and parts.hostname.lower().endswith('duckduckgo.com') and parts.path.startswith('/l/'):
        target = parse_qs(parts.query).get('uddg', [''])[0]
        return target if re.match(r'^https?://', target, re.IGNORECASE) else None
    if raw.startswith('/l/?'):
        target = parse_qs(raw.split('?', 1)[1]).get('uddg', [''])[0]
        return target if re.match(r'^https?://', target, re.IGNORECASE) else None
    if re.match(r'^https?://', raw, re.IGNORECASE):
        return raw
    return None


def looks_blocked(html: str) -> bool:
    page = (html or '').lower()
    return any(phrase in page for phrase in _BLOCK_PHRASES)


def merge_rows(*groups: list) -> list:
    """Concatenate row groups, keeping the first row per canonical URL."""
    out = []
    seen = set()
    for group in groups:
        for row in group:
            key = canonicalize_url(row.href)
            if not key or key in seen:
                continue
            seen.add(key)
            row.href = key
            out.append(row)
    return out


def _collect_rows(raw_rows, engine: str, unwrap: Callable[[str], Optional[str]],
                  skip_google: bool) -> list:
    out = []
    seen = set()
    for raw in raw_rows or []:
        if not isinstance(raw, dict):
            continue
        href = unwrap(raw.get('href') or '')
        if not href or not is_page_like_url(href):
            continue
        if skip_google and is_google_host(href):
            continue
        url = canonicalize_url(href)
        if url in seen:
            continue
        seen.add(url)
        out.append(SerpRow(
            href=url,
            title=clean_text(raw.get('title'), TITLE_CAP),
            snippet=clean_text(raw.get('snippet'), SNIPPET_CAP),
            engine=engine,
            provider_raw=raw,
        ))
    return out


# ------------------------------------------------------------------ #
# Engines
# ------------------------------------------------------------------ #

class SerpApiEngine:
    """Google results through the SerpAPI JSON endpoint."""

    name = 'serpapi'

    def __init__(self, api_key: str, session: Optional[requests.Session] = None,
                 timeout: float = 30.0):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=8),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        reraise=True,
    )
    def _fetch(self, params: dict) -> dict:
        resp = self.session.get(SERPAPI_ENDPOINT, params=params, timeout=self.timeout)
        if resp.status_code != 200:
            raise SearchError(f'serpapi request failed ({resp.status_code})')
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        return payload if isinstance(payload, dict) else {}

    def search(self, query: str, num: int) -> SearchOutcome:
        payload = self._fetch({
            'engine': 'google',
            'q': query,
            'num': str(num),
            'api_key': self.api_key,
            'hl': 'en',
            'google_domain': 'google.com',
        })
        provider_error = clean_text(payload.get('error'), TITLE_CAP)
        if provider_error:
            raise SearchError(f'serpapi error: {provider_error}')

        organic = payload.get('organic_results')
        raw_rows = []
        for item in organic if isinstance(organic, list) else []:
            if not isinstance(item, dict):
                continue
            raw_rows.append({
                **item,
                'href': str(item.get('link') or item.get('url') or '').strip(),
            })
        rows = _collect_rows(raw_rows, self.name, lambda h: h or None, skip_google=True)
        for row in rows:
            row.provider_raw.pop('href', None)
        return SearchOutcome(rows=rows)


class GoogleBrowserEngine:
    """google.com/search driven through a Selenium WebDriver."""

    name = 'google'

    def __init__(self, driver, sleep: Callable[[float], None] = time.sleep):
        self.driver = driver
        self._sleep = sleep

    def _accept_consent(self):
        try:
            for button in self.driver.find_elements(By.TAG_NAME, 'button'):
                label = (button.text or '').strip().lower()
                if any(word in label for word in _CONSENT_LABELS):
                    button.click()
                    return
        except Exception as e:
            log.debug(f'Consent dialog not handled: {e}')

    def search(self, query: str, num: int) -> SearchOutcome:
        self.driver.get(f'{GOOGLE_SEARCH_URL}?{urlencode({"q": query, "num": num, "hl": "en"})}')
        self._sleep(0.7)
        self._accept_consent()
        self._sleep(0.35)

        blocked = looks_blocked(self.driver.page_source or '')
        try:
            raw_rows = self.driver.execute_script(_GOOGLE_ROWS_JS)
        except Exception as e:
            log.debug(f'Google row extraction failed: {e}')
            raw_rows = []
        rows = _collect_rows(raw_rows, self.name, normalize_google_href, skip_google=True)
        return SearchOutcome(rows=rows, blocked=blocked)


class DuckDuckGoBrowserEngine:
    """html.duckduckgo.com results in the same browser; used as the fallback."""

    name = 'duckduckgo'

    def __init__(self, driver, sleep: Callable[[float], None] = time.sleep):
        self.driver = driver
        self._sleep = sleep

    def search(self, query: str, num: int = 0) -> SearchOutcome:
        self.driver.get(f'{DUCKDUCKGO_SEARCH_URL}?{urlencode({"q": query})}')
        self._sleep(0.45)
        try:
            raw_rows = self.driver.execute_script(_DUCKDUCKGO_ROWS_JS)
        except Exception as e:
            log.debug(f'DuckDuckGo row extraction failed: {e}')
            raw_rows = []
        rows = _collect_rows(raw_rows, self.name, normalize_duckduckgo_href, skip_google=False)
        return SearchOutcome(rows=rows)
