"""
crawl.py — Run the platform search agents and collect qualifying result rows.

Flow per run:
  1  resolve_engine()      → serpapi / google / duckduckgo / auto (pure, no I/O)
  2  BrowserSession.launch → only when a browser engine is needed; always closed
  3  for each agent, for each query (sequential, polite random delay between
     queries but never before the first):
       search → fallback to DuckDuckGo when auto and Google blocked/empty
       → host allow-list + required terms → per-query / per-agent caps
       → within-agent URL dedupe
  4  CrawlOutput with per-agent diagnostics and the flat result list

A failing query is recorded as a diagnostic string and the agent moves on.
"""

import random
import time
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import requests

from creator_graph.agents import AgentPlan, select_agents
from creator_graph.config import clamp_int, default_browser, read_serp_api_key
from creator_graph.engines import (
    DuckDuckGoBrowserEngine,
    GoogleBrowserEngine,
    SerpApiEngine,
    canonicalize_url,
    merge_rows,
    resolve_engine,
)
from scrapers.browser import BrowserSession, normalize_browser

log = logging.getLogger(__name__)


@dataclass
class CrawlResult:
    agent_id: str
    platform: str
    query: str
    position: int
    title: str
    snippet: str
    url: str
    raw: dict

    def to_dict(self) -> dict:
        return {
            'agentId': self.agent_id,
            'platform': self.platform,
            'query': self.query,
            'position': self.position,
            'title': self.title,
            'snippet': self.snippet,
            'url': self.url,
            'raw': self.raw,
        }


@dataclass
class AgentRun:
    id: str
    label: str
    platform: str
    queries: list
    results_found: int
    unique_urls: int
    blocked_queries: int
    diagnostics: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'label': self.label,
            'platform': self.platform,
            'queries': list(self.queries),
            'resultsFound': self.results_found,
            'uniqueUrls': self.unique_urls,
            'blockedQueries': self.blocked_queries,
            'diagnostics': list(self.diagnostics),
        }


@dataclass
class CrawlOutput:
    ok: bool
    agents_run: list = field(default_factory=list)
    results: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'ok': self.ok,
            'agentsRun': [r.to_dict() for r in self.agents_run],
            'results': [r.to_dict() for r in self.results],
        }


class _EngineSet:
    """The primary engine plus the DuckDuckGo fallback for one run."""

    def __init__(self, engine: str, serp_api_key: Optional[str],
                 browser: Optional[BrowserSession],
                 http_session: Optional[requests.Session],
                 sleep: Callable[[float], None]):
        self.engine = engine
        self.serpapi = SerpApiEngine(serp_api_key, session=http_session) if engine == 'serpapi' else None
        driver = browser.driver if browser else None
        self.google = GoogleBrowserEngine(driver, sleep=sleep) if engine in ('google', 'auto') else None
        self.duckduckgo = DuckDuckGoBrowserEngine(driver, sleep=sleep) if engine in ('duckduckgo', 'auto') else None

    def run_query(self, query: str, num: int, diagnostics: list) -> tuple[list, bool]:
        """Return (rows, google_blocked) for one query, recording failures."""
        rows = []
        blocked = False

        if self.serpapi is not None:
            try:
                rows = merge_rows(rows, self.serpapi.search(query, num).rows)
            except Exception as e:
                diagnostics.append(f'serpapi query failed ({query}): {e}')
            return rows, blocked

        if self.google is not None:
            try:
                outcome = self.google.search(query, num)
                rows = merge_rows(rows, outcome.rows)
                blocked = outcome.blocked
                if blocked:
                    diagnostics.append(f'google flagged automation for query: {query}')
            except Exception as e:
                diagnostics.append(f'google query failed ({query}): {e}')

        use_ddg = self.engine == 'duckduckgo' or (
            self.engine == 'auto' and (blocked or not rows)
        )
        if use_ddg and self.duckduckgo is not None:
            try:
                ddg_rows = self.duckduckgo.search(query).rows
                if ddg_rows:
                    diagnostics.append(f'used duckduckgo fallback for query: {query}')
                rows = merge_rows(rows, ddg_rows)
            except Exception as e:
                diagnostics.append(f'duckduckgo query failed ({query}): {e}')

        return rows, blocked


def _filter_rows(plan: AgentPlan, query: str, rows: list, agent_results: list,
                 seen_urls: set, per_query_cap: int, agent_cap: int,
                 relaxed_matching: bool) -> int:
    """Append qualifying rows to agent_results; return how many were added."""
    added = 0
    for row in rows:
        if added >= per_query_cap or len(agent_results) >= agent_cap:
            break
        if not plan.url_matches(row.href):
            continue
        if not relaxed_matching and not plan.text_matches(row.href, row.title, row.snippet):
            continue

        url = canonicalize_url(row.href)
        if url in seen_urls:
            continue
        seen_urls.add(url)
        added += 1

        agent_results.append(CrawlResult(
            agent_id=plan.id,
            platform=plan.platform,
            query=query,
            position=added,
            title=row.title,
            snippet=row.snippet,
            url=url,
            raw={
                'engine': row.engine,
                'agentId': plan.id,
                'providerRaw': row.provider_raw,
            },
        ))
    return added


def crawl_creator_agents(agent_ids: Optional[list] = None,
                         max_results_per_query: Optional[int] = None,
                         max_results_per_agent: Optional[int] = None,
                         max_results_per_agent_by_id: Optional[dict] = None,
                         google_num: Optional[int] = None,
                         engine: Optional[str] = 'auto',
                         browser: Optional[str] = None,
                         query_delay_ms_min: Optional[int] = None,
                         query_delay_ms_max: Optional[int] = None,
                         relaxed_matching: bool = False,
                         serp_api_key: Optional[str] = None,
                         session_factory: Callable[..., BrowserSession] = BrowserSession.launch,
                         http_session: Optional[requests.Session] = None,
                         sleep: Callable[[float], None] = time.sleep) -> CrawlOutput:
    """
    Run the selected agents sequentially and return every qualifying row.

    Raises ConfigurationError (before any network call) when engine=serpapi
    has no key or the engine/browser name is unknown.
    """
    agents = select_agents(agent_ids)
    if not agents:
        log.warning(f'No crawl agents matched {agent_ids}')
        return CrawlOutput(ok=False)

    per_query_cap = clamp_int(max_results_per_query, 1, 30, 10)
    agent_cap_default = clamp_int(max_results_per_agent, 1, 80, 20)
    num = clamp_int(google_num, 10, 50, 20)
    delay_min = clamp_int(query_delay_ms_min, 0, 120_000, 3_000)
    delay_max = max(delay_min, clamp_int(query_delay_ms_max, 0, 120_000, 8_000))
    overrides = max_results_per_agent_by_id or {}

    key = read_serp_api_key(serp_api_key)
    requested_engine = (engine or 'auto').strip().lower()
    resolved = resolve_engine(requested_engine, key)
    requested_browser = normalize_browser(browser or default_browser('CREATOR_DISCOVERY_BROWSER'))

    session = None
    if resolved != 'serpapi':
        session = session_factory(requested_browser, headless=True)
    browser_used = session.browser_name if session else 'none'

    results: list[CrawlResult] = []
    runs: list[AgentRun] = []
    query_ordinal = 0

    try:
        engines = _EngineSet(resolved, key, session, http_session, sleep)

        for plan in agents:
            diagnostics: list[str] = []
            agent_results: list[CrawlResult] = []
            seen_urls: set[str] = set()
            blocked_queries = 0
            agent_cap = clamp_int(overrides.get(plan.id), 1, 80, agent_cap_default)

            diagnostics.append(
                f'requestedBrowser={requested_browser} browser={browser_used} '
                f'requestedEngine={requested_engine} engine={resolved} '
                f'relaxedMatching={relaxed_matching} agentResultCap={agent_cap}'
            )
            if requested_engine == 'auto' and resolved == 'serpapi':
                diagnostics.append('auto-selected serpapi because SERP_API_KEY is set')
            if session is not None and session.warning:
                diagnostics.append(session.warning)

            log.info(f'Agent {plan.id}: {len(plan.queries)} queries (engine={resolved})')

            for query in plan.queries:
                if len(agent_results) >= agent_cap:
                    break
                if query_ordinal > 0 and delay_max > 0:
                    sleep(random.randint(delay_min, delay_max) / 1000.0)
                query_ordinal += 1

                rows, blocked = engines.run_query(query, num, diagnostics)
                if blocked:
                    blocked_queries += 1

                try:
                    diagnostics.append(f'query rows before filtering ({query}): {len(rows)}')
                    added = _filter_rows(plan, query, rows, agent_results, seen_urls,
                                         per_query_cap, agent_cap, relaxed_matching)
                    if not added:
                        diagnostics.append(f'no qualifying results for query: {query}')
                except Exception as e:
                    diagnostics.append(f'query failed ({query}): {e}')

            runs.append(AgentRun(
                id=plan.id,
                label=plan.label,
                platform=plan.platform,
                queries=list(plan.queries),
                results_found=len(agent_results),
                unique_urls=len({r.url for r in agent_results}),
                blocked_queries=blocked_queries,
                diagnostics=diagnostics,
            ))
            results.extend(agent_results)
            log.info(f'  {plan.id}: {len(agent_results)} results, {blocked_queries} blocked')
    finally:
        if session is not None:
            session.close()

    return CrawlOutput(ok=len(results) > 0, agents_run=runs, results=results)
