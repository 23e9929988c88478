import pytest

from creator_graph.stan_page import (
    classify_product_types,
    detect_cta_style,
    extract_money_values,
    extract_stan_signals,
    format_price,
    is_useful_outbound,
    profile_handle_from_title,
    profile_name_from_title,
    snapshot_from_page_state,
)


def page_state():
    return {
        'finalUrl': 'https://stan.store/janefit',
        'pageTitle': 'Jane Fit (@janefit) | Stan',
        'metaDescription': 'Coach helping busy moms',
        'fullName': None,
        'bio': '  Strength coach\xa0for moms ',
        'headerImageUrl': '/img/header.png',
        'socialLinks': ['https://instagram.com/janefit', 'https://www.google.com/maps'],
        'anchorLinks': ['https://stan.store/janefit/p/1', 'https://tiktok.com/@janefit', 'mailto:jane@janefit.com'],
        'calloutBlocks': [
            {'title': '12-Week Strength Program', 'description': 'Full gym program', 'price': '$99',
             'cta': 'Buy now', 'imageUrl': '/img/p1.png', 'href': '/janefit/p/1'},
            {'title': None, 'price': None, 'cta': None},
        ],
        'pillBlocks': [{'title': 'Book a 1:1 call', 'cta': 'Book'}],
        'nuxtPages': [
            {'data': {
                'product': {'title': 'Meal Guide', 'price': {'amount': 1299, 'currency': 'usd'},
                            'type': 'digital-download', 'image': 'https://cdn.example.com/meal.png'},
                'button': {'button_text': 'Get it'},
            }},
            'not a page',
        ],
        'contentImages': [],
        'bodyText': 'Email me at jane@janefit.com. Programs from $1,299.00',
        'htmlLength': 5000,
    }


def test_snapshot_builds_cards_from_every_source():
    snapshot = snapshot_from_page_state(page_state())

    assert [c.source for c in snapshot.offer_cards] == ['dom_callout', 'dom_pill', 'nuxt']
    first = snapshot.offer_cards[0]
    assert first.image_url == 'https://stan.store/img/p1.png'
    assert first.href == 'https://stan.store/janefit/p/1'
    nuxt = snapshot.offer_cards[2]
    assert nuxt.price == '$1,299'
    assert nuxt.cta == 'Get it'
    assert nuxt.source_type == 'digital-download'
    assert snapshot.bio == 'Strength coach for moms'
    assert snapshot.header_image_url == 'https://stan.store/img/header.png'
    assert snapshot.html_length == 5000


def test_extract_stan_signals_from_full_page():
    signals = extract_stan_signals(snapshot_from_page_state(page_state()), 'janefit')

    assert signals.profile_name == 'Jane Fit'
    assert signals.profile_handle == 'janefit'
    assert signals.bio_description == 'Strength coach for moms'
    assert signals.offers == ['12-Week Strength Program', 'Book a 1:1 call', 'Meal Guide']
    assert signals.pricing_points == ['$99', '$1,299', '$1,299.00']
    assert signals.outbound_socials == ['https://instagram.com/janefit', 'https://tiktok.com/@janefit']
    assert signals.email == 'jane@janefit.com'
    assert signals.cta_style == 'consultative'
    assert signals.product_types == ['course', 'coaching', 'digital_guide']
    assert signals.header_image_url == 'https://stan.store/img/header.png'
    assert signals.extracted_confidence == 1.0
    assert signals.to_dict()['offer_cards'][0]['imageUrl'] == 'https://stan.store/img/p1.png'


def test_sparse_page_falls_back_to_meta_and_slug():
    snapshot = snapshot_from_page_state({
        'finalUrl': 'https://stan.store/bob',
        'pageTitle': 'Bob Builds | Stan',
        'metaDescription': 'Woodworking plans',
        'bodyText': '',
    })
    signals = extract_stan_signals(snapshot, 'bob')

    assert signals.profile_name == 'Bob Builds'
    assert signals.profile_handle == 'bob'
    assert signals.bio_description == 'Woodworking plans'
    assert signals.offers == []
    assert signals.cta_style == 'generic'
    assert signals.extracted_confidence == 0.45


@pytest.mark.parametrize('amount, currency, expected', [
    (1299, 'usd', '$1,299'),
    (49.5, 'eur', 'EUR 49.5'),
    (19.99, None, '$19.99'),
    (0, 'usd', None),
    (-5, 'usd', None),
    (True, 'usd', None),
    ('12', 'usd', None),
    (float('nan'), 'usd', None),
])
def test_format_price(amount, currency, expected):
    assert format_price(amount, currency) == expected


@pytest.mark.parametrize('text, style', [
    ('Book a discovery call', 'consultative'),
    ('Shop the guide', 'transactional'),
    ('Join the newsletter', 'community'),
    ('DM me "START"', 'inbound_dm'),
    ('hello there', 'generic'),
])
def test_detect_cta_style(text, style):
    assert detect_cta_style(text) == style


def test_classify_product_types_uses_card_hints():
    class Card:
        source_type = 'meeting'

    assert classify_product_types('notion template pack', [Card()]) == ['coaching', 'template']
    assert classify_product_types('', []) == []


def test_title_parsing():
    assert profile_name_from_title('Jane Fit (@janefit) | Stan Store') == 'Jane Fit'
    assert profile_handle_from_title('Jane Fit (@janefit) | Stan') == 'janefit'
    assert profile_handle_from_title('Jane Fit | Stan') is None
    assert profile_name_from_title(None) is None


def test_money_and_outbound_helpers():
    assert extract_money_values('from $ 49 or $1,299.00, again $49') == ['$49', '$1,299.00']
    assert is_useful_outbound('https://instagram.com/jane')
    assert not is_useful_outbound('https://www.googletagmanager.com/ns.html')
    assert not is_useful_outbound('https://shop.stan.store/jane')
    assert not is_useful_outbound('mailto:jane@example.com')
