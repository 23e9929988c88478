from unittest.mock import MagicMock

import pytest

from creator_graph.crawl import crawl_creator_agents
from creator_graph.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    for var in ('SERP_API_KEY', 'SERPAPI_API_KEY', 'serp_api_key', 'CREATOR_DISCOVERY_BROWSER'):
        monkeypatch.delenv(var, raising=False)


def _factory(session):
    factory = MagicMock(return_value=session)
    return factory


def _google_rows():
    return [
        {'href': '/url?q=https://www.instagram.com/janefit/', 'title': 'Jane (@janefit)',
         'snippet': '12K followers stan.store/janefit'},
        {'href': 'https://www.instagram.com/janefit/?utm_source=ig', 'title': 'Jane again',
         'snippet': 'stan.store/janefit'},
        {'href': 'https://www.instagram.com/nostore/', 'title': 'No store', 'snippet': 'just photos'},
        {'href': 'https://tiktok.com/@other', 'title': 'Other', 'snippet': 'stan.store/other'},
    ]


def test_crawl_with_google_filters_and_dedupes(fake_session, no_sleep):
    driver = fake_session.driver
    driver.page_source = '<html></html>'
    driver.find_elements.return_value = []
    driver.execute_script.return_value = _google_rows()
    factory = _factory(fake_session)

    output = crawl_creator_agents(
        agent_ids=['instagram_stan_creators'],
        engine='google',
        browser='chrome',
        session_factory=factory,
        sleep=no_sleep,
    )

    assert output.ok
    assert [r.url for r in output.results] == ['https://www.instagram.com/janefit/']
    result = output.results[0]
    assert result.agent_id == 'instagram_stan_creators'
    assert result.position == 1
    assert result.raw['engine'] == 'google'

    run = output.agents_run[0]
    assert run.results_found == 1
    assert run.blocked_queries == 0
    assert run.diagnostics[0].startswith('requestedBrowser=chrome browser=chrome')
    factory.assert_called_once_with('chrome', headless=True)
    fake_session.close.assert_called_once()


def test_relaxed_matching_skips_text_requirements(fake_session, no_sleep):
    driver = fake_session.driver
    driver.page_source = ''
    driver.find_elements.return_value = []
    driver.execute_script.return_value = _google_rows()

    output = crawl_creator_agents(
        agent_ids=['instagram_stan_creators'],
        engine='google',
        relaxed_matching=True,
        session_factory=_factory(fake_session),
        sleep=no_sleep,
    )
    assert [r.url for r in output.results] == [
        'https://www.instagram.com/janefit/',
        'https://www.instagram.com/nostore/',
    ]


def test_auto_falls_back_to_duckduckgo_when_google_blocked(fake_session, no_sleep):
    driver = fake_session.driver
    driver.page_source = 'Our systems have detected unusual traffic'
    driver.find_elements.return_value = []
    driver.execute_script.side_effect = [
        [],
        [{'href': '//duckduckgo.com/l/?uddg=https%3A%2F%2Fx.com%2Fjanefit',
          'title': 'Jane on X', 'snippet': 'Website: stan.store/janefit'}],
    ]

    output = crawl_creator_agents(
        agent_ids=['x_stan_creators'],
        engine='auto',
        session_factory=_factory(fake_session),
        sleep=no_sleep,
    )

    assert [r.url for r in output.results] == ['https://x.com/janefit']
    run = output.agents_run[0]
    assert run.blocked_queries == 1
    assert any('google flagged automation' in d for d in run.diagnostics)
    assert any('used duckduckgo fallback' in d for d in run.diagnostics)


def test_auto_with_key_uses_serpapi_without_a_browser(no_sleep):
    http = MagicMock()
    response = MagicMock(status_code=200)
    response.json.return_value = {'organic_results': [
        {'link': 'https://www.youtube.com/@janefit', 'title': 'Jane', 'snippet': 'stan.store/janefit 20K subscribers'},
    ]}
    http.get.return_value = response
    factory = MagicMock()

    output = crawl_creator_agents(
        agent_ids=['youtube_stan_creators'],
        serp_api_key='secret',
        session_factory=factory,
        http_session=http,
        sleep=no_sleep,
    )

    factory.assert_not_called()
    assert output.ok
    assert output.results[0].raw['engine'] == 'serpapi'
    assert 'auto-selected serpapi because SERP_API_KEY is set' in output.agents_run[0].diagnostics


def test_serpapi_failure_becomes_a_diagnostic(no_sleep):
    http = MagicMock()
    http.get.return_value = MagicMock(status_code=401)

    output = crawl_creator_agents(
        agent_ids=['tiktok_stan_creators'],
        engine='serpapi',
        serp_api_key='secret',
        http_session=http,
        sleep=no_sleep,
    )
    assert not output.ok
    diagnostics = output.agents_run[0].diagnostics
    assert any(d.startswith('serpapi query failed') for d in diagnostics)
    assert any(d.startswith('no qualifying results') for d in diagnostics)


def test_serpapi_without_key_fails_before_any_network_call():
    factory = MagicMock()
    with pytest.raises(ConfigurationError):
        crawl_creator_agents(engine='serpapi', session_factory=factory)
    factory.assert_not_called()


def test_unknown_agents_return_not_ok():
    output = crawl_creator_agents(agent_ids=['does_not_exist'])
    assert not output.ok
    assert output.to_dict() == {'ok': False, 'agentsRun': [], 'results': []}


def test_browser_is_closed_when_a_query_raises(fake_session, no_sleep):
    fake_session.driver.get.side_effect = RuntimeError('navigation failed')

    output = crawl_creator_agents(
        agent_ids=['x_stan_creators'],
        engine='google',
        session_factory=_factory(fake_session),
        sleep=no_sleep,
    )
    assert not output.ok
    assert any('google query failed' in d for d in output.agents_run[0].diagnostics)
    fake_session.close.assert_called_once()


def test_delay_only_between_queries(fake_session):
    fake_session.driver.page_source = ''
    fake_session.driver.find_elements.return_value = []
    fake_session.driver.execute_script.return_value = []
    sleeps = []

    crawl_creator_agents(
        agent_ids=['x_stan_creators', 'tiktok_stan_creators'],
        engine='google',
        query_delay_ms_min=1000,
        query_delay_ms_max=1000,
        session_factory=_factory(fake_session),
        sleep=sleeps.append,
    )
    # one inter-query delay; the rest are the engine's own short page waits
    assert sleeps.count(1.0) == 1
