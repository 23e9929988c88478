"""
run.py — CLI entry point for the creator graph pipeline.

Usage:
    # List the search agents
    python -m creator_graph.run agents

    # Crawl two agents and store the results as one discovery run
    python -m creator_graph.run crawl --agents instagram_stan_creators,tiktok_stan_creators --ingest

    # Ingest a saved payload ({discoveryRunId?, query, results[]}) or a CSV export
    python -m creator_graph.run ingest --file results.json
    python -m creator_graph.run ingest --file results.csv --query "stan.store fitness coach"

    # Signal extraction (dry run by default), then identity resolution
    python -m creator_graph.run extract --run-id dr_ab12cd34ef --write
    python -m creator_graph.run resolve --run-id dr_ab12cd34ef

    # Enrichment
    python -m creator_graph.run enrich-stan --run-id dr_ab12cd34ef --limit 20
    python -m creator_graph.run enrich-social --min-followers 1000

    # Compatibility
    python -m creator_graph.run signals --identity-id ci_0a1b2c3d4e
    python -m creator_graph.run score --brand brand.json --creator creators.json

Environment variables (alternative to flags):
    SUPABASE_URL, SUPABASE_KEY, SERP_API_KEY,
    CREATOR_DISCOVERY_BROWSER, CREATOR_STAN_ENRICH_BROWSER

Every command prints its result as JSON on stdout.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from creator_graph.config import (
    DEFAULT_CONFIG_PATH,
    default_browser,
    load_config,
    read_serp_api_key,
    read_supabase_credentials,
)
from creator_graph.errors import ValidationError

log = logging.getLogger(__name__)


def _setup_logging(verbose: bool):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s  %(levelname)-8s  %(name)s  %(message)s',
        datefmt='%H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stderr),
        ]
    )
    # Quieten noisy third-party loggers
    for noisy in ('urllib3', 'requests', 'selenium', 'WDM', 'httpx', 'hpack'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _store(args):
    # Imported lazily so `agents` and `score` run without the supabase client configured
    from database.store import CreatorStore

    url, key = read_supabase_credentials(args.supabase_url, args.supabase_key)
    return CreatorStore(url, key)


def _read_json_file(path: str):
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except ValueError as e:
        raise ValidationError(f'{path}: invalid JSON: {e}') from e


def _split_ids(value):
    if not value:
        return None
    return [v.strip() for v in value.split(',') if v.strip()]


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #

def cmd_agents(args, config):
    from creator_graph.agents import list_agents

    return {'agents': list_agents()}


def cmd_crawl(args, config):
    from creator_graph.crawl import crawl_creator_agents

    d = config['discovery']
    output = crawl_creator_agents(
        agent_ids=_split_ids(args.agents),
        max_results_per_query=args.max_per_query or d['max_results_per_query'],
        max_results_per_agent=args.max_per_agent or d['max_results_per_agent'],
        max_results_per_agent_by_id=d.get('max_results_per_agent_by_id') or None,
        google_num=d['google_num'],
        engine=args.engine or d['engine'],
        browser=args.browser or default_browser('CREATOR_DISCOVERY_BROWSER', d['browser']),
        query_delay_ms_min=d['query_delay_ms_min'],
        query_delay_ms_max=d['query_delay_ms_max'],
        relaxed_matching=args.relaxed or d['relaxed_matching'],
        serp_api_key=read_serp_api_key(args.serp_api_key),
    )
    result = output.to_dict()

    if args.ingest and output.ok:
        from creator_graph.ingest import ingest_crawl_output

        result['ingest'] = ingest_crawl_output(_store(args), output, discovery_run_id=args.run_id)
    return result


def cmd_ingest(args, config):
    from creator_graph.ingest import (
        ingest_crawl_output,
        ingest_results,
        load_results_csv,
        parse_ingest_payload,
    )

    path = Path(args.file)
    if path.suffix.lower() == '.csv':
        rows = load_results_csv(str(path))
        store = _store(args)
        if args.query:
            return ingest_results(store, args.query, rows, discovery_run_id=args.run_id)
        if any(not r.get('query') for r in rows):
            raise ValidationError(f'{path}: rows without a query column need --query')
        return ingest_crawl_output(store, {'results': rows}, discovery_run_id=args.run_id)

    payload = parse_ingest_payload(path.read_text())
    return ingest_results(
        _store(args),
        payload['query'],
        payload['results'],
        discovery_run_id=args.run_id or payload['discoveryRunId'],
    )


def cmd_extract(args, config):
    from creator_graph.extract_signals import extract_raw_accounts

    e = config['extract']
    return extract_raw_accounts(
        _store(args),
        discovery_run_id=args.run_id,
        platform=args.platform,
        raw_account_ids=_split_ids(args.ids),
        limit=args.limit or e['limit'],
        preview_limit=e['preview_limit'],
        dry_run=not args.write,
        extractor_version=e['extractor_version'],
    )


def cmd_resolve(args, config):
    from creator_graph.resolve import resolve_identities

    return resolve_identities(
        _store(args),
        discovery_run_id=args.run_id,
        limit=args.limit or config['resolve']['limit'],
    )


def cmd_enrich_stan(args, config):
    from creator_graph.stan_enrich import enrich_stan_profiles

    s = config['stan']
    return enrich_stan_profiles(
        _store(args),
        discovery_run_id=args.run_id,
        creator_identity_id=args.identity_id,
        stan_slug=args.stan_slug,
        limit=args.limit or s['limit'],
        force=args.force,
        dry_run=args.dry_run,
        browser=args.browser or default_browser('CREATOR_STAN_ENRICH_BROWSER', s['browser']),
        headless=not args.headed and s['headless'],
        timeout_ms=args.timeout_ms or s['timeout_ms'],
        wait_after_load_ms=s['wait_after_load_ms'],
    )


def cmd_enrich_social(args, config):
    from creator_graph.social_metrics import enrich_social_metrics

    s = config['social']
    return enrich_social_metrics(
        _store(args),
        creator_identity_id=args.identity_id,
        limit=args.limit or s['limit'],
        force=args.force,
        min_follower_estimate=(
            args.min_followers if args.min_followers is not None else s['min_follower_estimate']
        ),
        dry_run=args.dry_run,
    )


def cmd_signals(args, config):
    from creator_graph.features import identity_signals

    return identity_signals(_store(args), args.identity_id)


def cmd_score(args, config):
    from creator_graph.score import rank_creators

    brand = _read_json_file(args.brand)
    creators = _read_json_file(args.creator)
    if isinstance(creators, dict):
        creators = [creators]
    if not isinstance(brand, dict) or not isinstance(creators, list):
        raise ValidationError('--brand must hold an object and --creator an object or a list')

    ranked = rank_creators(brand, creators)
    return {
        'ranked': [
            {'creatorId': creator.get('id'), 'niche': creator.get('niche'), 'score': score.to_dict()}
            for creator, score in ranked
        ]
    }


COMMANDS = {
    'agents': cmd_agents,
    'crawl': cmd_crawl,
    'ingest': cmd_ingest,
    'extract': cmd_extract,
    'resolve': cmd_resolve,
    'enrich-stan': cmd_enrich_stan,
    'enrich-social': cmd_enrich_social,
    'signals': cmd_signals,
    'score': cmd_score,
}


# ------------------------------------------------------------------ #
# Argument parsing
# ------------------------------------------------------------------ #

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='creator-graph',
        description='Creator discovery, identity resolution and compatibility scoring',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--config', default=DEFAULT_CONFIG_PATH,
                        help=f'Path to configuration file (default: {DEFAULT_CONFIG_PATH})')
    parser.add_argument('--supabase-url', default=None, metavar='URL',
                        help='Supabase project URL. Env: SUPABASE_URL')
    parser.add_argument('--supabase-key', default=None, metavar='KEY',
                        help='Supabase service key. Env: SUPABASE_KEY')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable DEBUG logging')

    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('agents', help='List the search agents')

    p = sub.add_parser('crawl', help='Run search agents')
    p.add_argument('--agents', default=None, metavar='IDS',
                   help='Comma-separated agent ids (default: all)')
    p.add_argument('--engine', default=None, choices=['auto', 'serpapi', 'google', 'duckduckgo'])
    p.add_argument('--browser', default=None,
                   help='chrome | firefox. Env: CREATOR_DISCOVERY_BROWSER')
    p.add_argument('--serp-api-key', default=None, metavar='KEY',
                   help='SerpAPI key. Env: SERP_API_KEY')
    p.add_argument('--max-per-query', type=int, default=None, metavar='N')
    p.add_argument('--max-per-agent', type=int, default=None, metavar='N')
    p.add_argument('--relaxed', action='store_true',
                   help='Skip the required-terms check on URL/title/snippet; keep every profile URL the agent matches')
    p.add_argument('--ingest', action='store_true',
                   help='Upsert the results as one discovery run')
    p.add_argument('--run-id', default=None, help='Discovery run id for --ingest')

    p = sub.add_parser('ingest', help='Ingest a JSON payload or CSV of search results')
    p.add_argument('--file', required=True, help='.json payload or .csv export')
    p.add_argument('--query', default=None, help='Query for CSV rows without a query column')
    p.add_argument('--run-id', default=None, help='Discovery run id (default: new run)')

    p = sub.add_parser('extract', help='Extract signals from raw accounts')
    p.add_argument('--run-id', default=None, help='Discovery run (default: latest)')
    p.add_argument('--platform', default=None)
    p.add_argument('--ids', default=None, metavar='IDS', help='Comma-separated raw account ids')
    p.add_argument('--limit', type=int, default=None, metavar='N')
    p.add_argument('--write', action='store_true',
                   help='Persist extractions (default is a dry run)')

    p = sub.add_parser('resolve', help='Merge raw accounts into creator identities')
    p.add_argument('--run-id', default=None)
    p.add_argument('--limit', type=int, default=None, metavar='N')

    p = sub.add_parser('enrich-stan', help='Scrape stan.store pages for identities')
    p.add_argument('--run-id', default=None)
    p.add_argument('--identity-id', default=None)
    p.add_argument('--stan-slug', default=None)
    p.add_argument('--limit', type=int, default=None, metavar='N')
    p.add_argument('--force', action='store_true', help='Re-enrich identities with a profile')
    p.add_argument('--dry-run', action='store_true', help='Crawl but do not write')
    p.add_argument('--browser', default=None,
                   help='chrome | firefox. Env: CREATOR_STAN_ENRICH_BROWSER')
    p.add_argument('--headed', action='store_true', help='Show the browser window')
    p.add_argument('--timeout-ms', type=int, default=None, metavar='MS')

    p = sub.add_parser('enrich-social', help='Estimate social reach and engagement')
    p.add_argument('--identity-id', default=None)
    p.add_argument('--limit', type=int, default=None, metavar='N')
    p.add_argument('--force', action='store_true')
    p.add_argument('--min-followers', type=float, default=None, metavar='N')
    p.add_argument('--dry-run', action='store_true')

    p = sub.add_parser('signals', help='Derive compatibility signals for one identity')
    p.add_argument('--identity-id', required=True)

    p = sub.add_parser('score', help='Score creators against a brand')
    p.add_argument('--brand', required=True, help='Brand JSON file')
    p.add_argument('--creator', required=True, help='Creator JSON file (object or list)')

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    try:
        config = load_config(args.config)
        _print_json(COMMANDS[args.command](args, config))
        sys.exit(0)

    except KeyboardInterrupt:
        print('\n\nInterrupted. Re-run to resume (upserts are idempotent).', file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        log.error(f'Fatal error: {e}', exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
