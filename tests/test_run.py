import json

import pytest

from creator_graph import run
from tests.fakes import InMemoryStore


def _main(argv, capsys):
    with pytest.raises(SystemExit) as exc:
        run.main(argv)
    out = capsys.readouterr().out
    return exc.value.code, out


@pytest.fixture
def no_config(tmp_path):
    return ['--config', str(tmp_path / 'absent.yaml')]


@pytest.fixture
def memory_store(monkeypatch):
    store = InMemoryStore()
    monkeypatch.setattr(run, '_store', lambda args: store)
    return store


def test_agents_command_prints_catalog(no_config, capsys):
    code, out = _main(no_config + ['agents'], capsys)
    assert code == 0
    ids = [a['id'] for a in json.loads(out)['agents']]
    assert 'instagram_stan_creators' in ids


def test_score_command_ranks_creators(no_config, tmp_path, capsys):
    brand = tmp_path / 'brand.json'
    brand.write_text(json.dumps({'category': 'fitness coaching', 'preferred_platforms': ['tiktok']}))
    creators = tmp_path / 'creators.json'
    creators.write_text(json.dumps([
        {'id': 'a', 'niche': 'personal finance', 'platforms': ['x']},
        {'id': 'b', 'niche': 'fitness coaching', 'platforms': ['tiktok']},
    ]))

    code, out = _main(no_config + ['score', '--brand', str(brand), '--creator', str(creators)], capsys)

    assert code == 0
    ranked = json.loads(out)['ranked']
    assert [r['creatorId'] for r in ranked] == ['b', 'a']
    assert 0 <= ranked[0]['score']['total'] <= 1


def test_invalid_json_exits_nonzero(no_config, tmp_path, capsys):
    bad = tmp_path / 'brand.json'
    bad.write_text('{nope')
    code, out = _main(no_config + ['score', '--brand', str(bad), '--creator', str(bad)], capsys)
    assert code == 1
    assert out == ''


def test_ingest_then_resolve_through_the_cli(no_config, tmp_path, memory_store, capsys):
    payload = tmp_path / 'results.json'
    payload.write_text(json.dumps({
        'discoveryRunId': 'dr_cli',
        'query': 'site:x.com stan.store',
        'results': [
            {'url': 'https://x.com/jane', 'title': 'Jane', 'snippet': 'stan.store/jane'},
            {'url': 'https://instagram.com/jane', 'title': 'Jane', 'snippet': 'stan.store/jane'},
        ],
    }))

    code, out = _main(no_config + ['ingest', '--file', str(payload)], capsys)
    assert code == 0
    assert json.loads(out)['inserted'] == 2

    code, out = _main(no_config + ['resolve', '--run-id', 'dr_cli'], capsys)
    assert code == 0
    stats = json.loads(out)['stats']
    assert stats['createdIdentities'] == 1
    assert stats['mergedByStanSlug'] == 2


def test_csv_without_query_needs_flag(no_config, tmp_path, memory_store, capsys):
    csv_path = tmp_path / 'results.csv'
    csv_path.write_text('url,title\nhttps://x.com/a,A\n')

    code, _ = _main(no_config + ['ingest', '--file', str(csv_path)], capsys)
    assert code == 1

    code, out = _main(no_config + ['ingest', '--file', str(csv_path), '--query', 'q'], capsys)
    assert code == 0
    assert json.loads(out)['inserted'] == 1


def test_relaxed_flag_help_describes_the_terms_check(capsys):
    code, out = _main(['crawl', '--help'], capsys)
    text = ' '.join(out.split())
    assert code == 0
    assert 'Skip the required' in text
    assert 'not only profile URLs' not in text
