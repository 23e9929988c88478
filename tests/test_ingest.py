import json

import pytest

from creator_graph.crawl import CrawlOutput, CrawlResult
from creator_graph.errors import ValidationError
from creator_graph.ingest import (
    coverage_report,
    ingest_crawl_output,
    ingest_results,
    load_results_csv,
    parse_ingest_payload,
)


def test_ingest_results_normalizes_and_reports(store):
    outcome = ingest_results(store, 'site:instagram.com stan.store', [
        {'url': 'https://www.instagram.com/janefit/', 'title': 'Jane', 'snippet': '12K followers stan.store/JaneFit'},
        {'url': 'https://x.com/bob', 'title': 'Bob', 'snippet': 'no store'},
        {'url': 'mailto:someone@example.com'},
    ], discovery_run_id='dr_test')

    assert outcome['discoveryRunId'] == 'dr_test'
    assert outcome['inserted'] == 2
    report = outcome['report']
    assert report['total'] == 2
    assert report['withStanSlug'] == 1
    assert report['stanSlugCoveragePct'] == 50.0
    assert report['byPlatform']['instagram'] == 1
    assert report['byPlatform']['x'] == 1

    jane = next(r for r in store.raw_accounts.values() if r['platform'] == 'instagram')
    assert jane['normalized_profile_url'] == 'https://instagram.com/janefit'
    assert jane['handle'] == 'janefit'
    assert jane['stan_slug'] == 'janefit'
    assert jane['follower_count_estimate'] == 12000
    assert jane['position'] == 1


def test_reingesting_same_url_keeps_one_row_with_latest_snippet(store):
    row = {'url': 'https://x.com/jane', 'title': 'Jane', 'snippet': 'first'}
    ingest_results(store, 'q', [row], discovery_run_id='dr_1')
    ingest_results(store, 'q', [{**row, 'snippet': 'second'}], discovery_run_id='dr_1')

    rows = list(store.raw_accounts.values())
    assert len(rows) == 1
    assert rows[0]['snippet'] == 'second'


def test_ingest_generates_run_id(store):
    outcome = ingest_results(store, 'q', [{'url': 'https://x.com/jane'}])
    assert outcome['discoveryRunId'].startswith('dr_')


def test_coverage_report_for_empty_run(store):
    report = coverage_report(store, 'dr_missing')
    assert report['total'] == 0
    assert report['stanSlugCoveragePct'] == 0


def test_ingest_crawl_output_groups_by_query(store):
    def result(query, url):
        return CrawlResult('x_stan_creators', 'x', query, 1, 'T', 'stan.store/a', url, {})

    output = CrawlOutput(ok=True, results=[
        result('q1', 'https://x.com/a'),
        result('q2', 'https://x.com/b'),
        result('q1', 'https://x.com/c'),
    ])
    outcome = ingest_crawl_output(store, output, discovery_run_id='dr_crawl')

    assert outcome['inserted'] == 3
    assert outcome['report']['total'] == 3
    queries = sorted(r['query'] for r in store.raw_accounts.values())
    assert queries == ['q1', 'q1', 'q2']


def test_parse_ingest_payload_accepts_json_text():
    payload = parse_ingest_payload(json.dumps({'query': ' q ', 'results': [{'url': 'https://x.com/a'}]}))
    assert payload == {'discoveryRunId': None, 'query': 'q', 'results': [{'url': 'https://x.com/a'}]}


@pytest.mark.parametrize('payload', [
    '{not json',
    '[]',
    {'results': []},
    {'query': 'q', 'results': {}},
    {'query': 'q', 'results': [{'title': 'no url'}]},
    {'query': 'q', 'results': [], 'discoveryRunId': 5},
])
def test_parse_ingest_payload_rejects_malformed(payload):
    with pytest.raises(ValidationError):
        parse_ingest_payload(payload)


def test_load_results_csv(tmp_path):
    path = tmp_path / 'results.csv'
    path.write_text(
        'URL,Title,Snippet,Position,Query\n'
        'https://x.com/a,A,stan.store/a,3,q1\n'
        ',empty,,,\n'
        'https://x.com/b,B,,,\n'
    )
    rows = load_results_csv(str(path))
    assert rows == [
        {'url': 'https://x.com/a', 'title': 'A', 'snippet': 'stan.store/a', 'position': 3, 'query': 'q1'},
        {'url': 'https://x.com/b', 'title': 'B', 'snippet': None},
    ]


def test_load_results_csv_requires_url_column(tmp_path):
    path = tmp_path / 'bad.csv'
    path.write_text('link,title\nhttps://x.com/a,A\n')
    with pytest.raises(ValidationError):
        load_results_csv(str(path))
