from creator_graph.extract_signals import (
    extract_account_signals,
    extract_raw_accounts,
    instagram_mention,
    profile_from_texts,
)
from creator_graph.ingest import ingest_results


def test_profile_from_texts_skips_reserved_paths():
    texts = ['see https://instagram.com/p/xyz and https://www.instagram.com/Jane.Fit/']
    assert profile_from_texts(texts, 'instagram') == 'https://instagram.com/jane.fit'
    assert profile_from_texts(['https://twitter.com/search', 'https://twitter.com/Jane'], 'x') == 'https://twitter.com/jane'
    assert profile_from_texts(['nothing'], 'unknown') is None


def test_instagram_mention_ignores_reserved_words():
    assert instagram_mention(['email me @p or @jane.fit']) == 'jane.fit'


def test_instagram_mention_ignores_email_domains():
    assert instagram_mention(['write to coach@gmail.com', 'IG: @jane.fit']) == 'jane.fit'
    assert instagram_mention(['coach@gmail.com']) is None


def test_extract_account_signals_for_tiktok_video():
    extraction = extract_account_signals({
        'id': 'ra_1',
        'discovery_run_id': 'dr_1',
        'platform': 'tiktok',
        'source_url': 'https://www.tiktok.com/@janefit/video/123',
        'title': 'Jane Fit on TikTok',
        'snippet': 'IG https://instagram.com/jane.fit 25K followers stan.store/JaneFit',
        'raw': None,
    })

    assert extraction['platform'] == 'tiktok'
    assert extraction['stanSlug'] == 'janefit'
    assert extraction['allStanUrls'] == ['https://stan.store/JaneFit']
    assert extraction['followerCountEstimate'] == 25000
    assert extraction['platformProfileUrl'] == 'https://tiktok.com/@janefit'
    assert extraction['platformHandle'] == 'janefit'
    assert extraction['instagramProfileUrl'] == 'https://instagram.com/jane.fit'
    assert extraction['instagramHandle'] == 'jane.fit'
    assert extraction['confidence'] == 1.0
    assert extraction['signals'] == [
        'stan_slug', 'followers', 'tiktok_profile_url', 'tiktok_handle',
        'instagram_profile_url', 'instagram_handle',
    ]


def test_extract_account_signals_builds_profile_from_recovered_handle():
    extraction = extract_account_signals({
        'id': 'ra_2',
        'platform': 'instagram',
        'source_url': 'https://www.instagram.com/p/abc/',
        'title': 'Jane (@janefit) • Instagram photos',
        'snippet': '',
    })
    assert extraction['platformHandle'] == 'janefit'
    assert extraction['platformProfileUrl'] == 'https://instagram.com/janefit'
    assert extraction['instagramProfileUrl'] == 'https://instagram.com/janefit'
    assert extraction['stanSlug'] is None
    assert extraction['confidence'] == 0.42


def _seed(store):
    ingest_results(store, 'q', [
        {'url': 'https://x.com/jane', 'title': 'Jane', 'snippet': 'stan.store/jane 3K followers'},
        {'url': 'https://www.youtube.com/@bob', 'title': 'Bob', 'snippet': '10K subscribers'},
    ], discovery_run_id='dr_seed')


def test_extract_raw_accounts_dry_run_writes_nothing(store):
    _seed(store)
    outcome = extract_raw_accounts(store)

    assert outcome['discoveryRunId'] == 'dr_seed'
    assert outcome['dryRun'] is True
    assert outcome['stats']['selected'] == 2
    assert outcome['stats']['processed'] == 2
    assert outcome['stats']['persisted'] == 0
    assert outcome['stats']['withStanSlug'] == 1
    assert outcome['stats']['withFollowerCount'] == 2
    assert len(outcome['preview']) == 2
    assert 'discoveryRunId' not in outcome['preview'][0]
    assert store.extractions == {}


def test_extract_raw_accounts_persists_per_version(store):
    _seed(store)
    outcome = extract_raw_accounts(store, discovery_run_id='dr_seed', platform='youtube',
                                   dry_run=False, extractor_version='v2')

    assert outcome['stats']['selected'] == 1
    assert outcome['stats']['persisted'] == 1
    [(key, row)] = store.extractions.items()
    assert key[1] == 'v2'
    assert row['platform_handle'] == 'bob'
    assert row['follower_count_estimate'] == 10000
    assert 'signals' in row['evidence']


def test_extract_raw_accounts_ignores_unknown_platform_filter(store):
    _seed(store)
    outcome = extract_raw_accounts(store, platform='myspace', preview_limit=1)
    assert outcome['stats']['selected'] == 2
    assert len(outcome['preview']) == 1
