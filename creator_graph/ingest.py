"""
ingest.py — Persist search results as raw accounts and report coverage.

Each result is normalized, then upserted on (discovery_run_id, query,
source_url): re-ingesting the same URL for the same run/query refreshes
the row instead of duplicating it. Results whose URL does not normalize
are skipped.

Entry points:
  ingest_results()       — one query's results (the API-style entry point)
  ingest_crawl_output()  — a whole crawl run, grouped by query, one run id
  parse_ingest_payload() — validate a {discoveryRunId?, query, results} JSON body
  load_results_csv()     — result rows from a CSV export (pandas)
"""

import json
import logging
from collections import OrderedDict
from typing import Optional

import pandas as pd

from creator_graph.errors import ValidationError
from creator_graph.normalize import normalize
from database.store import new_id

log = logging.getLogger(__name__)

REPORT_PLATFORMS = ('x', 'instagram', 'linkedin', 'tiktok', 'youtube', 'unknown')


def _pct(part: int, total: int) -> float:
    if total <= 0:
        return 0
    return round(part / total * 100, 2)


def coverage_report(store, discovery_run_id: str) -> dict:
    """Coverage over every row of the run, not just the ones just ingested."""
    rows = store.list_run_accounts(discovery_run_id)
    by_platform = {p: 0 for p in REPORT_PLATFORMS}
    with_slug = 0
    for row in rows:
        platform = row.get('platform') or 'unknown'
        by_platform[platform] = by_platform.get(platform, 0) + 1
        if row.get('stan_slug'):
            with_slug += 1

    return {
        'discoveryRunId': discovery_run_id,
        'total': len(rows),
        'withStanSlug': with_slug,
        'stanSlugCoveragePct': _pct(with_slug, len(rows)),
        'byPlatform': by_platform,
    }


def ingest_results(store, query: str, results: list,
                   discovery_run_id: Optional[str] = None) -> dict:
    """
    Upsert one query's results and return {discoveryRunId, inserted, report}.

    Each result is a dict with at least `url`; `position`, `title`,
    `snippet` and `raw` are optional.
    """
    run_id = discovery_run_id or new_id('dr')
    inserted = 0

    for i, result in enumerate(results):
        normalized = normalize(
            result.get('url'),
            result.get('title'),
            result.get('snippet'),
            result.get('raw'),
        )
        if normalized is None:
            log.debug(f'Skipping non-http result: {result.get("url")!r}')
            continue

        position = result.get('position')
        store.upsert_raw_account({
            'discovery_run_id': run_id,
            'query': query,
            'position': position if position is not None else i + 1,
            'title': result.get('title'),
            'snippet': result.get('snippet'),
            'source_url': result['url'],
            'normalized_profile_url': normalized.normalized_profile_url,
            'platform': normalized.platform,
            'handle': normalized.handle,
            'stan_slug': normalized.stan_slug,
            'follower_count_estimate': normalized.follower_count_estimate,
            'raw': result.get('raw') if result.get('raw') is not None else result,
        })
        inserted += 1

    report = coverage_report(store, run_id)
    log.info(f'Ingested {inserted}/{len(results)} results for run {run_id} '
             f'(stan coverage {report["stanSlugCoveragePct"]}%)')
    return {'discoveryRunId': run_id, 'inserted': inserted, 'report': report}


def ingest_crawl_output(store, crawl_output, discovery_run_id: Optional[str] = None) -> dict:
    """Ingest a crawl run (CrawlOutput or its dict form) query by query under one run id."""
    payload = crawl_output.to_dict() if hasattr(crawl_output, 'to_dict') else crawl_output
    run_id = discovery_run_id or new_id('dr')

    by_query: 'OrderedDict[str, list]' = OrderedDict()
    for row in payload.get('results') or []:
        by_query.setdefault(row.get('query') or '', []).append(row)

    inserted = 0
    for query, rows in by_query.items():
        outcome = ingest_results(store, query, rows, discovery_run_id=run_id)
        inserted += outcome['inserted']

    return {'discoveryRunId': run_id, 'inserted': inserted, 'report': coverage_report(store, run_id)}


# ------------------------------------------------------------------ #
# Input parsing
# ------------------------------------------------------------------ #

def parse_ingest_payload(payload) -> dict:
    """
    Validate an ingestion body (JSON text or an already-decoded dict).

    Returns {discoveryRunId, query, results}; raises ValidationError.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise ValidationError(f'invalid JSON payload: {e}') from e

    if not isinstance(payload, dict):
        raise ValidationError('payload must be a JSON object')

    query = payload.get('query')
    if not isinstance(query, str) or not query.strip():
        raise ValidationError('query is required')

    results = payload.get('results')
    if not isinstance(results, list):
        raise ValidationError('results must be a list')
    for i, result in enumerate(results):
        if not isinstance(result, dict) or not isinstance(result.get('url'), str):
            raise ValidationError(f'results[{i}] must be an object with a url')

    run_id = payload.get('discoveryRunId')
    if run_id is not None and not isinstance(run_id, str):
        raise ValidationError('discoveryRunId must be a string')

    return {'discoveryRunId': run_id, 'query': query.strip(), 'results': results}


def load_results_csv(path: str) -> list:
    """
    Read result rows from a CSV export with columns url, title, snippet and
    optionally position / query. Rows without a url are dropped.
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip().lower() for c in df.columns]
    if 'url' not in df.columns:
        raise ValidationError(f'{path}: CSV needs a url column')

    df = df[df['url'].str.strip() != '']
    results = []
    for record in df.to_dict('records'):
        row = {
            'url': record['url'].strip(),
            'title': record.get('title') or None,
            'snippet': record.get('snippet') or None,
        }
        position = (record.get('position') or '').strip()
        if position.isdigit():
            row['position'] = int(position)
        if record.get('query'):
            row['query'] = record['query']
        results.append(row)

    log.info(f'Loaded {len(results)} result rows from {path}')
    return results
