import pytest

from creator_graph.compat_signals import (
    FALLBACK_NICHE,
    SignalInput,
    buying_intent_score,
    contains_keyword,
    extract_compatibility_signals,
    infer_content_style,
    infer_selling_style,
    pick_primary_platform,
    sanitize_platform_metrics,
    select_niche,
)
from creator_graph.features import build_signal_input, identity_signals
from creator_graph.score import compute_compatibility_score


def fitness_input(**overrides):
    data = dict(
        canonical_stan_slug='janefit',
        bio_description='Fitness coach sharing gym workout plans and nutrition tips',
        offers=['12-week gym program', 'Book a coaching call'],
        pricing_points=['$99'],
        product_types=['course'],
        cta_style='consultative',
        account_platforms=['tiktok', 'instagram'],
        social_platform_metrics={
            'tiktok': {'followers': 20000, 'avg_views': 5000, 'engagement_rate': 0.05, 'confidence': 0.8},
            'instagram': {'followers': 5000, 'engagement_rate': 0.03},
        },
        stan_confidence=0.9,
        social_confidence=0.8,
    )
    data.update(overrides)
    return SignalInput(**data)


def test_contains_keyword_word_boundaries():
    assert contains_keyword('ai tools for founders', 'ai')
    assert not contains_keyword('daily training', 'ai')
    assert contains_keyword('meal plan ideas', 'meal plan')
    assert not contains_keyword('anything', '  ')


def test_select_niche_highest_ratio_and_fallback():
    rule, ratio, hits = select_niche('fitness coach with gym workouts')
    assert rule.niche == 'fitness coaching'
    assert hits == ['fitness', 'gym', 'coach']
    assert ratio == pytest.approx(3 / 8)

    rule, ratio, hits = select_niche('nothing relevant')
    assert rule.niche == FALLBACK_NICHE
    assert ratio == 0.0
    assert hits == []


def test_fitness_creator_signals():
    signals = extract_compatibility_signals(fitness_input())

    assert signals.niche == 'fitness coaching'
    assert signals.niche_confidence == 0.98
    assert signals.top_topics[:4] == ['gym routines', 'fitness transformations', 'nutrition', 'weight loss']
    assert 'fitness routines' in signals.top_topics
    assert 'lead generation' in signals.top_topics
    assert signals.audience_types == ['gym beginners', 'wellness seekers', 'coaches']
    assert signals.products_sold == ['course', 'coaching']
    assert signals.intent_signals == ['lead_generation', 'digital_product']
    assert signals.platforms == ['tiktok', 'instagram']
    assert signals.primary_platform == 'tiktok'
    assert signals.estimated_engagement == pytest.approx(0.044, abs=1e-3)
    assert signals.selling_style == 'consultative'
    assert signals.content_style == 'consultative coaching-style content'
    assert signals.buying_intent_score == 0.84
    assert signals.confidence == pytest.approx(0.945, abs=1e-3)
    assert signals.evidence['sourcesUsed'] == [
        'stan_bio', 'stan_offers', 'stan_product_types', 'stan_pricing_points', 'social_metrics',
    ]


def test_explicit_engagement_wins_over_metrics():
    signals = extract_compatibility_signals(fitness_input(social_estimated_engagement=0.061234))
    assert signals.estimated_engagement == 0.0612


def test_empty_input_uses_fallback_niche():
    signals = extract_compatibility_signals(SignalInput())

    assert signals.niche == FALLBACK_NICHE
    assert signals.niche_confidence == 0.35
    assert signals.top_topics == ['creator economy', 'brand partnerships', 'digital products']
    assert signals.selling_style == 'educational'
    assert signals.content_style == 'educational creator content'
    assert signals.buying_intent_score == 0.3
    assert signals.primary_platform is None
    assert signals.estimated_engagement is None
    assert 0.2 <= signals.confidence <= 0.98


def test_sanitize_platform_metrics_drops_unknown_and_junk():
    metrics = sanitize_platform_metrics({
        'Instagram': {'followers': '1200.4', 'engagement_rate': 1.7, 'source': 'x'},
        'myspace': {'followers': 10},
        'tiktok': 'not a dict',
        'youtube': {'followers': None},
    })
    assert metrics == {'instagram': {'followers': 1200, 'engagement_rate': 1.0, 'source': 'x'}}


def test_pick_primary_platform_falls_back_to_first_platform():
    assert pick_primary_platform({}, ['x', 'tiktok']) == 'x'
    assert pick_primary_platform({}, []) is None


@pytest.mark.parametrize('cta, intents, style', [
    ('transactional', [], 'direct_response'),
    ('inbound_dm', [], 'dm_conversion'),
    (None, ['community', 'direct_purchase'], 'direct_response'),
    ('generic', ['community'], 'community_led'),
    (None, [], 'educational'),
])
def test_infer_selling_style(cta, intents, style):
    assert infer_selling_style(cta, intents) == style


def test_infer_content_style_for_ugc():
    assert infer_content_style('educational', ['ugc content']) == 'ugc demonstration content'


def test_buying_intent_is_clamped():
    score = buying_intent_score(['$1'], ['a', 'b', 'c'], ['direct_purchase', 'lead_generation', 'affiliate'],
                                'direct_response', True, 'x')
    assert score == 0.98


# ------------------------------------------------------------------ #
# Store-backed feature assembly
# ------------------------------------------------------------------ #

@pytest.fixture
def enriched(store):
    store.insert_identity('ci_jane', 'janefit', None)
    raw = store.upsert_raw_account({
        'discovery_run_id': 'dr_1', 'query': 'site:tiktok.com "stan.store" fitness',
        'source_url': 'https://www.tiktok.com/@janefit', 'platform': 'tiktok',
        'title': 'Jane (@janefit) gym workouts', 'snippet': 'Fitness coach, stan.store/janefit',
        'follower_count_estimate': 20000,
    })
    store.link_account({
        'creator_identity_id': 'ci_jane', 'raw_account_id': raw['id'], 'platform': 'tiktok',
        'handle': 'janefit', 'normalized_profile_url': 'https://tiktok.com/@janefit',
        'source_url': 'https://www.tiktok.com/@janefit',
    })
    store.upsert_stan_profile({
        'creator_identity_id': 'ci_jane',
        'stan_slug': 'janefit',
        'bio_description': 'Helping busy moms get strong',
        'offers': '["Gym program"]',
        'pricing_points': ['$49'],
        'product_types': ['course'],
        'outbound_socials': ['https://instagram.com/janefit'],
        'cta_style': 'transactional',
        'extracted_confidence': 0.7,
    })
    store.upsert_social_signal({
        'creator_identity_id': 'ci_jane', 'platform': 'tiktok', 'followers_estimate': 20000,
        'avg_views_estimate': 4000, 'engagement_rate_estimate': 0.055, 'extraction_confidence': 0.8,
        'sample_size': 2, 'source': 'identity_graph_estimate',
    })
    return store


def test_build_signal_input_reads_every_source(enriched):
    data = build_signal_input(enriched, 'ci_jane')

    assert data.canonical_stan_slug == 'janefit'
    assert data.offers == ['Gym program']
    assert data.account_platforms == ['tiktok']
    assert data.account_queries == ['site:tiktok.com "stan.store" fitness']
    assert data.profile_urls == ['https://tiktok.com/@janefit']
    assert data.social_platform_metrics['tiktok']['engagement_rate'] == 0.055
    assert data.social_confidence == 0.8
    assert data.stan_confidence == 0.7


def test_identity_signals_produce_a_scorable_creator(enriched):
    out = identity_signals(enriched, 'ci_jane')
    creator = out['creator']

    assert out['signals']['niche'] == 'fitness coaching'
    assert creator['id'] == 'ci_jane'
    assert creator['platforms'] == ['tiktok', 'instagram']
    assert creator['metrics']['compatibility_signals']['selling_style'] == 'direct_response'
    assert creator['metrics']['platform_metrics']['tiktok']['followers'] == 20000

    score = compute_compatibility_score(
        {'category': 'fitness coaching', 'preferred_platforms': ['tiktok'], 'match_topics': ['gym routines']},
        creator,
    )
    assert 0.0 <= score.total <= 1.0
    assert 'category/niche match' in score.reasons


def test_identity_without_enrichment_still_extracts(store):
    store.insert_identity('ci_bare', None, 'bare.com')
    out = identity_signals(store, 'ci_bare')
    assert out['signals']['niche'] == FALLBACK_NICHE
    assert out['creator']['platforms'] == []
