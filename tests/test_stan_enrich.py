from unittest.mock import MagicMock

import pytest

from creator_graph.stan_enrich import enrich_stan_profiles
from tests.test_stan_page import page_state


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    monkeypatch.delenv('CREATOR_STAN_ENRICH_BROWSER', raising=False)


@pytest.fixture
def identities(store):
    store.insert_identity('ci_jane', 'janefit', None)
    store.insert_identity('ci_site', None, 'bobbuilds.com')
    return store


def _run(store, session, **kwargs):
    factory = MagicMock(return_value=session)
    outcome = enrich_stan_profiles(store, session_factory=factory, sleep=lambda s: None, **kwargs)
    return outcome, factory


def test_enriches_identity_and_closes_owned_browser(identities, fake_session):
    fake_session.driver.execute_script.return_value = page_state()

    outcome, factory = _run(identities, fake_session)

    factory.assert_called_once_with('chrome', headless=True)
    fake_session.close.assert_called_once()
    assert outcome['stats']['selected'] == 1
    assert outcome['stats']['enriched'] == 1
    [result] = outcome['results']
    assert result['status'] == 'enriched'
    assert result['profileName'] == 'Jane Fit'
    assert result['offersFound'] == 3

    row = identities.stan_profiles['ci_jane']
    assert row['stan_slug'] == 'janefit'
    assert row['stan_url'] == 'https://stan.store/janefit'
    assert row['outbound_socials'] == ['https://instagram.com/janefit', 'https://tiktok.com/@janefit']
    assert row['offer_cards'][2]['source'] == 'nuxt'
    assert 'stan.store/janefit' in fake_session.driver.get.call_args.args[0]


def test_existing_profile_skipped_without_launching_a_browser(identities, fake_session):
    identities.upsert_stan_profile({'creator_identity_id': 'ci_jane', 'outbound_socials': []})

    outcome, factory = _run(identities, fake_session)

    factory.assert_not_called()
    assert outcome['stats']['skippedExisting'] == 1
    assert outcome['results'][0]['reason'] == 'profile already enriched; use force=true'


def test_force_updates_existing_profile(identities, fake_session):
    identities.upsert_stan_profile({'creator_identity_id': 'ci_jane', 'outbound_socials': []})
    fake_session.driver.execute_script.return_value = page_state()

    outcome, _ = _run(identities, fake_session, force=True)

    assert outcome['stats']['updated'] == 1
    assert outcome['results'][0]['status'] == 'updated'
    assert identities.stan_profiles['ci_jane']['profile_handle'] == 'janefit'


def test_identity_without_slug_is_skipped(identities, fake_session):
    outcome, factory = _run(identities, fake_session, creator_identity_id='ci_site')

    factory.assert_not_called()
    assert outcome['stats']['skippedNoSlug'] == 1
    assert outcome['results'][0]['reason'] == 'identity missing canonical_stan_slug'


def test_dry_run_writes_nothing(identities, fake_session):
    fake_session.driver.execute_script.return_value = page_state()

    outcome, _ = _run(identities, fake_session, dry_run=True)

    assert outcome['stats']['enriched'] == 1
    assert outcome['config']['dryRun'] is True
    assert identities.stan_profiles == {}


def test_failed_crawl_is_recorded_and_browser_closed(identities, fake_session):
    fake_session.driver.execute_script.side_effect = RuntimeError('page crashed')

    outcome, _ = _run(identities, fake_session)

    assert outcome['stats']['failed'] == 1
    assert outcome['results'][0] == {
        'creatorIdentityId': 'ci_jane',
        'stanSlug': 'janefit',
        'status': 'failed',
        'reason': 'page crashed',
    }
    fake_session.close.assert_called_once()


def test_caller_supplied_session_stays_open(identities, fake_session):
    fake_session.driver.execute_script.return_value = page_state()
    factory = MagicMock()

    outcome = enrich_stan_profiles(identities, session=fake_session, session_factory=factory,
                                   sleep=lambda s: None)

    factory.assert_not_called()
    fake_session.close.assert_not_called()
    assert outcome['config']['browserUsed'] == 'chrome'


def test_fallback_warning_is_reported(identities, fake_session):
    fake_session.driver.execute_script.return_value = page_state()
    fake_session.warning = 'firefox unavailable; fell back to chrome (boom)'

    outcome, factory = _run(identities, fake_session, browser='firefox', limit=5000, timeout_ms=10)

    factory.assert_called_once_with('firefox', headless=True)
    assert outcome['warnings'] == ['firefox unavailable; fell back to chrome (boom)']
    assert outcome['config']['requestedBrowser'] == 'firefox'
    assert outcome['config']['limit'] == 1000
    assert outcome['config']['timeoutMs'] == 3000
