from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

from database.store import IN_BATCH_SIZE, PAGE_SIZE, CreatorStore, DatabaseError, UniqueViolation, new_id


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def db(client):
    return CreatorStore('https://db.example.com', 'key', client=client)


def test_new_id_prefix():
    value = new_id('ci')
    assert value.startswith('ci_')
    assert len(value) == 13


def test_upsert_raw_account_keeps_existing_id(db, client):
    table = client.table.return_value
    lookup = table.select.return_value.eq.return_value.eq.return_value.eq.return_value.limit.return_value
    lookup.execute.return_value.data = [{'id': 'ra_existing'}]
    table.upsert.return_value.execute.return_value.data = [{'id': 'ra_existing', 'snippet': 'new'}]

    saved = db.upsert_raw_account({
        'discovery_run_id': 'dr_1', 'query': 'q', 'source_url': 'https://x.com/a', 'snippet': 'new',
    })

    assert saved == {'id': 'ra_existing', 'snippet': 'new'}
    payload = table.upsert.call_args.args[0]
    assert payload['id'] == 'ra_existing'
    assert table.upsert.call_args.kwargs['on_conflict'] == 'discovery_run_id,query,source_url'


def test_upsert_raw_account_mints_id_for_new_rows(db, client):
    table = client.table.return_value
    lookup = table.select.return_value.eq.return_value.eq.return_value.eq.return_value.limit.return_value
    lookup.execute.return_value.data = []
    table.upsert.return_value.execute.return_value.data = []

    saved = db.upsert_raw_account({'discovery_run_id': 'dr_1', 'query': 'q', 'source_url': 'u'})
    assert saved['id'].startswith('ra_')


def test_unique_violation_is_translated(db, client):
    client.table.return_value.insert.return_value.execute.side_effect = APIError(
        {'code': '23505', 'message': 'duplicate key value violates unique constraint'}
    )
    with pytest.raises(UniqueViolation):
        db.insert_identity('ci_1', 'jane', None)


def test_other_api_errors_become_database_errors(db, client):
    client.table.return_value.insert.return_value.execute.side_effect = APIError(
        {'code': '42501', 'message': 'permission denied'}
    )
    with pytest.raises(DatabaseError) as exc:
        db.insert_identity('ci_1', 'jane', None)
    assert not isinstance(exc.value, UniqueViolation)


def test_select_all_pages_until_a_short_page(db, client):
    ranged = client.table.return_value.select.return_value.eq.return_value.order.return_value.range
    full = MagicMock(data=[{'id': f'ra_{i}'} for i in range(PAGE_SIZE)])
    short = MagicMock(data=[{'id': 'ra_last'}])
    ranged.return_value.execute.side_effect = [full, short]

    rows = db.list_run_accounts('dr_1')

    assert len(rows) == PAGE_SIZE + 1
    assert ranged.call_args_list[1].args == (PAGE_SIZE, 2 * PAGE_SIZE - 1)


def test_link_account_ignores_duplicates(db, client):
    table = client.table.return_value
    db.link_account({'creator_identity_id': 'ci_1', 'raw_account_id': 'ra_1'})

    kwargs = table.upsert.call_args.kwargs
    assert kwargs == {'on_conflict': 'raw_account_id', 'ignore_duplicates': True}
    assert table.upsert.call_args.args[0]['id'].startswith('cia_')


def test_run_scoped_stan_selection_batches_id_filters(db, client):
    table = client.table.return_value
    run_page = MagicMock(data=[{'id': f'ra_{i}'} for i in range(IN_BATCH_SIZE * 2 + 50)])
    table.select.return_value.eq.return_value.order.return_value.range.return_value.execute.side_effect = [run_page]
    table.select.return_value.in_.return_value.execute.return_value.data = [{'creator_identity_id': 'ci_1'}]
    identities = table.select.return_value.not_.is_.return_value.in_.return_value
    identities.execute.return_value.data = [
        {'id': 'ci_1', 'canonical_stan_slug': 'jane', 'updated_at': '2026-01-02', 'created_at': '2026-01-01'},
    ]

    rows = db.select_stan_identities(discovery_run_id='dr_1')

    assert rows == [{'id': 'ci_1', 'canonical_stan_slug': 'jane', 'has_existing_profile': True}]
    run_filters = [c.args for c in table.select.return_value.in_.call_args_list if c.args[0] == 'raw_account_id']
    assert len(run_filters) == 3
    assert all(len(ids) <= IN_BATCH_SIZE for _, ids in run_filters)
    assert sum(len(ids) for _, ids in run_filters) == IN_BATCH_SIZE * 2 + 50


def test_newest_first_orders_merged_batches():
    rows = [
        {'id': 'a', 'updated_at': None, 'created_at': '2026-03-01'},
        {'id': 'b', 'updated_at': '2026-02-01', 'created_at': '2026-01-01'},
        {'id': 'c', 'updated_at': '2026-02-01', 'created_at': '2026-01-05'},
        {'id': 'd', 'updated_at': '2026-01-01', 'created_at': '2026-01-01'},
    ]
    assert CreatorStore._newest_first(rows, 3) == [{'id': 'c'}, {'id': 'b'}, {'id': 'd'}]
    assert CreatorStore._newest_first(rows, 10)[-1] == {'id': 'a'}


def test_social_selection_batches_candidate_ids(db, client):
    table = client.table.return_value
    linked = [{'creator_identity_id': f'ci_{i}'} for i in range(IN_BATCH_SIZE + 10)]
    # linked accounts, stan profiles with socials, existing social rows
    table.select.return_value.range.return_value.execute.side_effect = [MagicMock(data=linked), MagicMock(data=[])]
    table.select.return_value.not_.is_.return_value.range.return_value.execute.return_value.data = []
    table.select.return_value.in_.return_value.execute.side_effect = [
        MagicMock(data=[{'id': 'ci_3', 'updated_at': '2026-01-02', 'created_at': '2026-01-01'}]),
        MagicMock(data=[]),
        MagicMock(data=[]),
        MagicMock(data=[]),
    ]

    rows = db.select_social_identities(limit=5)

    assert rows == [{'id': 'ci_3', 'outbound_socials': None, 'has_existing_social': False}]

    id_filters = [c.args for c in table.select.return_value.in_.call_args_list if c.args[0] == 'id']
    assert len(id_filters) == 2
    assert all(len(ids) <= IN_BATCH_SIZE for _, ids in id_filters)
