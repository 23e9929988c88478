"""
normalize.py — Canonicalize a search result into a social account record.

Given a result URL plus whatever text came with it (title, snippet, the
provider's raw payload) this module works out:

  platform            — x / instagram / linkedin / tiktok / youtube / unknown
  normalized_profile_url — https://<host>/<canonical-path>, no query or fragment
  handle              — from the URL, or recovered from "(@handle)" /
                        "Instagram · handle" mentions when the URL is a post
  stan_slug           — first stan.store/<slug> mention, trimmed + lower-cased
  follower_count_estimate — "12.3K followers", "4,500 subscribers", "2M subs"

Every helper is a pure function of its input so each regex can be tested
on its own.
"""

import re
from dataclasses import dataclass, asdict
from typing import Iterable, Optional
from urllib.parse import urlsplit, parse_qs

PLATFORMS = ('x', 'instagram', 'linkedin', 'tiktok', 'youtube')

_PLATFORM_DOMAINS = (
    ('x',         ('x.com', 'twitter.com')),
    ('instagram', ('instagram.com',)),
    ('linkedin',  ('linkedin.com',)),
    ('tiktok',    ('tiktok.com',)),
    ('youtube',   ('youtube.com', 'youtu.be')),
)

# First path segments that are never a profile
_X_RESERVED = {'home', 'search', 'explore', 'i', 'intent', 'settings'}
_IG_RESERVED = {'p', 'reel', 'reels', 'explore', 'stories', 'accounts', 'about'}
_YT_PREFIXES = {'channel', 'c', 'user'}

_STAN_URL_RE = re.compile(
    r'(?:https?://)?(?:www\.)?(?:[a-z0-9-]+\.)?stan\.store/([a-zA-Z0-9._-]+)',
    re.IGNORECASE
)
_SLUG_LEAD_RE = re.compile(r'^[\s"\'`(\[{<]+')
_SLUG_TRAIL_RE = re.compile(r'[\s"\'`)\]}>.,!?;:]+$')

# "12.3K followers", "4,500 subscribers", "2M+ subs"
_FOLLOWERS_RE = re.compile(
    r'\b(\d{1,3}(?:,\d{3})+|\d+(?:\.\d+)?)\s*([kmb])?\+?\s*(followers?|subscribers?|subs?)\b',
    re.IGNORECASE
)
_MULTIPLIERS = {'k': 1_000, 'm': 1_000_000, 'b': 1_000_000_000}

_HANDLE_SHAPES = {
    'x':         re.compile(r'^[A-Za-z0-9_]{1,15}$'),
    'instagram': re.compile(r'^[A-Za-z0-9._]{2,30}$'),
    'tiktok':    re.compile(r'^[A-Za-z0-9._]{2,24}$'),
    'youtube':   re.compile(r'^[A-Za-z0-9._-]{2,60}$'),
    'linkedin':  re.compile(r'^[A-Za-z0-9_%\-]{2,120}$'),
}

# Mention patterns, tried in order; the first hit with a valid shape wins.
# Bare @mentions must not follow a word character, so emails never match.
_HANDLE_MENTIONS = {
    'x': (
        re.compile(r'\(\s*@([A-Za-z0-9_]{1,15})\s*\)'),
        re.compile(r'\b(?:x|twitter)\s*·\s*([A-Za-z0-9_]{1,15})\b', re.IGNORECASE),
        re.compile(r'(?<!\w)@([A-Za-z0-9_]{1,15})'),
    ),
    'instagram': (
        re.compile(r'\(\s*@([A-Za-z0-9._]{2,30})\s*\)'),
        re.compile(r'\binstagram\s*·\s*([A-Za-z0-9._]{2,30})\b', re.IGNORECASE),
        re.compile(r'(?<!\w)@([A-Za-z0-9._]{2,30})'),
    ),
    'linkedin': (
        re.compile(r'linkedin\.com/in/([A-Za-z0-9_%\-]{2,120})', re.IGNORECASE),
        re.compile(r'linkedin\.com/company/([A-Za-z0-9_%\-]{2,120})', re.IGNORECASE),
    ),
    'tiktok': (
        re.compile(r'tiktok\.com/@([A-Za-z0-9._]{2,24})', re.IGNORECASE),
        re.compile(r'\(\s*@([A-Za-z0-9._]{2,24})\s*\)'),
        re.compile(r'(?<!\w)@([A-Za-z0-9._]{2,24})'),
    ),
    'youtube': (
        re.compile(r'youtube\.com/@([A-Za-z0-9._-]{2,60})', re.IGNORECASE),
        re.compile(r'(?<!\w)@([A-Za-z0-9._-]{2,60})'),
    ),
}

MAX_TEXTS = 120
MAX_DEPTH = 4
MAX_TEXT_LEN = 12_000


@dataclass
class NormalizedResult:
    source_url: str
    platform: str
    normalized_profile_url: Optional[str]
    handle: Optional[str]
    stan_url: Optional[str]
    stan_slug: Optional[str]
    follower_count_estimate: Optional[int]

    def to_dict(self) -> dict:
        return asdict(self)


# ------------------------------------------------------------------ #
# URL helpers
# ------------------------------------------------------------------ #

def parse_http_url(raw: str):
    """Return urlsplit() parts for an absolute http(s) URL, else None."""
    try:
        parts = urlsplit(str(raw or '').strip())
    except ValueError:
        return None
    if parts.scheme.lower() not in ('http', 'https') or not parts.hostname:
        return None
    return parts


def url_host(raw: str) -> Optional[str]:
    parts = parse_http_url(raw)
    return parts.hostname.lower() if parts else None


def _host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith('.' + domain)


def detect_platform(host: str) -> str:
    host = (host or '').lower()
    for platform, domains in _PLATFORM_DOMAINS:
        if any(_host_matches(host, d) for d in domains):
            return platform
    return 'unknown'


def normalize_profile_url(url: str, platform: str) -> Optional[str]:
    """
    Rewrite a platform URL to its canonical profile form.

    Returns None for paths that are not profiles (posts, search, explore,
    LinkedIn feeds, TikTok videos without an @handle ...).
    """
    parts = parse_http_url(url)
    if not parts or platform not in PLATFORMS:
        return None

    host = re.sub(r'^www\.', '', parts.hostname.lower())
    segments = [s for s in parts.path.split('/') if s]

    if platform == 'youtube' and host == 'youtu.be':
        return f'https://youtu.be/{segments[0]}' if segments else None
    if not segments:
        return None

    first = segments[0]
    path = None
    if platform == 'x':
        if first.lower() not in _X_RESERVED:
            path = f'/{first}'
    elif platform == 'instagram':
        if first.lower() not in _IG_RESERVED:
            path = f'/{first}'
    elif platform == 'linkedin':
        if first.lower() in ('in', 'company') and len(segments) > 1:
            path = f'/{first.lower()}/{segments[1]}'
    elif platform == 'tiktok':
        if first.startswith('@') and len(first) > 1:
            path = f'/{first}'
    elif platform == 'youtube':
        if first.startswith('@') and len(first) > 1:
            path = f'/{first}'
        elif first.lower() in _YT_PREFIXES and len(segments) > 1:
            path = f'/{first.lower()}/{segments[1]}'
        elif first.lower() == 'watch':
            video_id = parse_qs(parts.query).get('v', [''])[0].strip()
            # Video links collapse onto the youtu.be share form
            return f'https://youtu.be/{video_id}' if video_id else None

    return f'https://{host}{path}' if path else None


def handle_from_profile_url(profile_url: Optional[str], platform: str) -> Optional[str]:
    parts = parse_http_url(profile_url) if profile_url else None
    if not parts:
        return None
    segments = [s for s in parts.path.split('/') if s]
    if not segments:
        return None

    if platform == 'linkedin':
        return segments[1] if len(segments) > 1 else None
    if platform == 'tiktok':
        return segments[0].lstrip('@') or None
    if platform == 'youtube':
        if parts.hostname.lower() == 'youtu.be':
            return None
        if segments[0].startswith('@'):
            return segments[0][1:] or None
        return segments[1] if len(segments) > 1 else None
    if platform in ('x', 'instagram'):
        return segments[0]
    return None


def profile_url_from_handle(platform: str, raw_handle: Optional[str]) -> Optional[str]:
    handle = clean_handle(raw_handle or '', platform)
    if not handle:
        return None
    return {
        'x':         f'https://x.com/{handle}',
        'instagram': f'https://instagram.com/{handle}',
        'linkedin':  f'https://linkedin.com/in/{handle}',
        'tiktok':    f'https://tiktok.com/@{handle}',
        'youtube':   f'https://youtube.com/@{handle}',
    }.get(platform)


# ------------------------------------------------------------------ #
# Text mining
# ------------------------------------------------------------------ #

def _push_text(out: list, value) -> None:
    text = str(value).strip()
    if text:
        out.append(text[:MAX_TEXT_LEN])


def collect_texts(value, out: Optional[list] = None, depth: int = 0,
                  cap: int = MAX_TEXTS) -> list[str]:
    """Flatten strings out of a nested payload (depth <= 4, at most `cap` strings)."""
    if out is None:
        out = []
    if depth > MAX_DEPTH or len(out) >= cap or value is None:
        return out
    if isinstance(value, str):
        _push_text(out, value)
    elif isinstance(value, (int, float, bool)):
        _push_text(out, value)
    elif isinstance(value, dict):
        for item in value.values():
            collect_texts(item, out, depth + 1, cap)
            if len(out) >= cap:
                break
    elif isinstance(value, (list, tuple)):
        for item in value:
            collect_texts(item, out, depth + 1, cap)
            if len(out) >= cap:
                break
    return out


def searchable_texts(url: str, title: Optional[str], snippet: Optional[str],
                     raw=None, cap: int = MAX_TEXTS) -> list[str]:
    """URL, title, snippet, then every string in the raw payload; de-duplicated."""
    texts: list[str] = []
    for value in (url, title, snippet):
        if value:
            _push_text(texts, value)
    collect_texts(raw, texts, 0, cap)
    return _unique(texts)[:cap]


def _unique(values: Iterable[str]) -> list[str]:
    seen = set()
    out = []
    for v in values:
        if v and v not in seen:
            seen.add(v)
            out.append(v)
    return out


def clean_stan_slug(raw: str) -> Optional[str]:
    cleaned = _SLUG_LEAD_RE.sub('', str(raw or '').strip())
    cleaned = _SLUG_TRAIL_RE.sub('', cleaned).strip('/')
    return cleaned or None


def extract_stan_urls(texts: Iterable[str], cap: int = 10) -> list[str]:
    """All distinct stan.store URLs mentioned, in order of appearance."""
    urls = []
    seen = set()
    for text in texts:
        for m in _STAN_URL_RE.finditer(text or ''):
            slug = clean_stan_slug(m.group(1))
            if not slug or slug.lower() in seen:
                continue
            seen.add(slug.lower())
            urls.append(f'https://stan.store/{slug}')
            if len(urls) >= cap:
                return urls
    return urls


def extract_stan_slug(text: str) -> Optional[str]:
    """
    First stan.store slug in the text, lower-cased.

    "Shop: https://stan.store/JaneFit." → "janefit"
    """
    urls = extract_stan_urls([text or ''], cap=1)
    if not urls:
        return None
    return urls[0].rsplit('/', 1)[-1].lower()


def _to_count(number: str, suffix: Optional[str]) -> Optional[int]:
    try:
        n = float(number.replace(',', ''))
    except ValueError:
        return None
    return int(round(n * _MULTIPLIERS.get((suffix or '').lower(), 1)))


def parse_follower_count(text: str) -> Optional[int]:
    """
    "12.3K followers" → 12300, "4,500 subscribers" → 4500, "2M subs" → 2000000.
    Returns None if no count is mentioned.
    """
    m = _FOLLOWERS_RE.search(text or '')
    if not m:
        return None
    return _to_count(m.group(1), m.group(2))


def follower_mentions(texts: Iterable[str], max_mentions: int = 12) -> tuple[Optional[int], list[str]]:
    """Largest follower count across texts plus the matched phrases (<= 8 kept)."""
    best = None
    mentions: list[str] = []
    for text in texts:
        for m in _FOLLOWERS_RE.finditer(text or ''):
            count = _to_count(m.group(1), m.group(2))
            if count is None:
                continue
            if best is None or count > best:
                best = count
            mentions.append(m.group(0))
            if len(mentions) >= max_mentions:
                return best, _unique(mentions)[:8]
    return best, _unique(mentions)[:8]


def clean_handle(raw: str, platform: str) -> Optional[str]:
    trimmed = str(raw or '').strip().lstrip('@')
    if not trimmed:
        return None
    shape = _HANDLE_SHAPES.get(platform)
    if shape is None:
        return trimmed
    return trimmed if shape.match(trimmed) else None


def recover_handle(texts: Iterable[str], platform: str) -> Optional[str]:
    """Handle from "(@name)", "Instagram · name", profile links or a bare @mention."""
    texts = list(texts)
    for pattern in _HANDLE_MENTIONS.get(platform, ()):
        for text in texts:
            for m in pattern.finditer(text or ''):
                handle = clean_handle(m.group(1), platform)
                if handle:
                    return handle
    return None


# ------------------------------------------------------------------ #
# Public interface
# ------------------------------------------------------------------ #

def normalize(url: str, title: Optional[str] = None, snippet: Optional[str] = None,
              raw=None) -> Optional[NormalizedResult]:
    """
    Normalize one search result. Returns None only when the URL is not an
    absolute http(s) URL; unknown hosts still yield a record (platform
    'unknown') so their stan slug and follower count are kept.
    """
    parts = parse_http_url(url)
    if not parts:
        return None

    platform = detect_platform(parts.hostname)
    profile_url = normalize_profile_url(url, platform)
    handle = handle_from_profile_url(profile_url, platform)

    texts = searchable_texts(url, title, snippet, raw)
    if handle is None and platform != 'unknown':
        handle = recover_handle(texts, platform)

    stan_urls = extract_stan_urls(texts, cap=1)
    stan_url = stan_urls[0] if stan_urls else None

    followers = None
    for text in texts:
        followers = parse_follower_count(text)
        if followers is not None:
            break

    return NormalizedResult(
        source_url=url,
        platform=platform,
        normalized_profile_url=profile_url,
        handle=handle,
        stan_url=stan_url,
        stan_slug=stan_url.rsplit('/', 1)[-1].lower() if stan_url else None,
        follower_count_estimate=followers,
    )
