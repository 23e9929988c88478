"""
Supabase persistence for the creator discovery pipeline.

Tables (schema is provisioned outside this package; the unique keys below
are what the upserts rely on):

- raw_accounts                 unique (discovery_run_id, query, source_url)
- raw_account_extractions      unique (raw_account_id, extractor_version)
- creator_identities           unique canonical_stan_slug, unique canonical_personal_domain
- creator_identity_accounts    unique raw_account_id
- identity_merge_candidates    unique raw_account_id
- creator_stan_profiles        unique creator_identity_id
- creator_social_profiles      unique (creator_identity_id, platform)
- creators                     downstream table, looked up by creator_identity_id

Upserted rows keep their existing id; the id column of the enrichment tables
is expected to have a server-side default. Raw accounts, identities and links
get prefixed ids from new_id() (ra_, ci_, cia_).

Every method returns plain dicts / lists so the pipeline modules never see
PostgREST response objects.
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from supabase import create_client, Client
from postgrest.exceptions import APIError

from creator_graph.errors import CreatorGraphError

log = logging.getLogger(__name__)

UNIQUE_VIOLATION = '23505'
PAGE_SIZE = 1000
# .in_() filters travel in the request URL; keep each list well under the 8 KB limit
IN_BATCH_SIZE = 200


class DatabaseError(CreatorGraphError):
    """A PostgREST call failed."""


class UniqueViolation(DatabaseError):
    """Insert collided with an existing unique key (Postgres 23505)."""


def new_id(prefix: str) -> str:
    return f'{prefix}_{uuid.uuid4().hex[:10]}'


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CreatorStore:
    """
    Supabase-backed store for raw accounts, identities and enrichment rows.

    Args:
        supabase_url: project URL
        supabase_key: service key (needs insert/update on every table above)
    """

    def __init__(self, supabase_url: str, supabase_key: str, client: Optional[Client] = None):
        """Initialize Supabase client."""
        self.client: Client = client or create_client(supabase_url, supabase_key)
        self.url = supabase_url

    def _execute(self, query) -> list:
        try:
            return query.execute().data or []
        except APIError as e:
            if str(getattr(e, 'code', '')) == UNIQUE_VIOLATION:
                raise UniqueViolation(str(e)) from e
            raise DatabaseError(str(e)) from e

    def _select_all(self, build) -> list:
        """Page through a select built by build() with .range()."""
        rows = []
        start = 0
        while True:
            page = self._execute(build().range(start, start + PAGE_SIZE - 1))
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            start += PAGE_SIZE

    def _select_in(self, build, column: str, values: Iterable) -> list:
        """Run build().in_(column, batch) for each IN_BATCH_SIZE slice of values and merge."""
        values = list(values)
        rows = []
        for i in range(0, len(values), IN_BATCH_SIZE):
            rows.extend(self._execute(build().in_(column, values[i:i + IN_BATCH_SIZE])))
        return rows

    @staticmethod
    def _newest_first(rows: list, limit: int, sort_keys=('updated_at', 'created_at')) -> list:
        """
        Order merged batch results like .order(k, desc=True, nullsfirst=False) for each
        sort key, apply the limit, and drop the sort columns again.
        """
        def key(row):
            return tuple(
                part for k in sort_keys
                for part in (row.get(k) is not None, row.get(k) or '')
            )

        ordered = sorted(rows, key=key, reverse=True)[:limit]
        return [{k: v for k, v in r.items() if k not in sort_keys} for r in ordered]

    # ------------------------------------------------------------------ #
    # Raw accounts
    # ------------------------------------------------------------------ #

    def upsert_raw_account(self, row: dict) -> dict:
        """Insert or update one raw account by (discovery_run_id, query, source_url)."""
        existing = self._execute(
            self.client.table('raw_accounts').select('id')
            .eq('discovery_run_id', row['discovery_run_id'])
            .eq('query', row['query'])
            .eq('source_url', row['source_url'])
            .limit(1)
        )
        payload = {**row, 'id': existing[0]['id'] if existing else new_id('ra')}
        saved = self._execute(
            self.client.table('raw_accounts').upsert(
                payload, on_conflict='discovery_run_id,query,source_url'
            )
        )
        return saved[0] if saved else payload

    def list_run_accounts(self, discovery_run_id: str) -> list:
        return self._select_all(
            lambda: self.client.table('raw_accounts')
            .select('id, platform, stan_slug')
            .eq('discovery_run_id', discovery_run_id)
            .order('created_at')
        )

    def latest_discovery_run_id(self) -> Optional[str]:
        rows = self._execute(
            self.client.table('raw_accounts').select('discovery_run_id')
            .order('created_at', desc=True).limit(1)
        )
        return rows[0]['discovery_run_id'] if rows else None

    def select_raw_accounts(self, discovery_run_id: Optional[str] = None,
                            platform: Optional[str] = None,
                            raw_account_ids: Optional[Iterable[str]] = None,
                            limit: int = 500) -> list:
        """Raw accounts newest first, optionally scoped by run, platform and ids."""
        columns = ('id, discovery_run_id, query, position, title, snippet, source_url, '
                   'normalized_profile_url, platform, handle, stan_slug, follower_count_estimate, raw')

        def build(extra: str = ''):
            query = self.client.table('raw_accounts').select(columns + extra)
            if discovery_run_id:
                query = query.eq('discovery_run_id', discovery_run_id)
            if platform:
                if platform == 'unknown':
                    query = query.or_('platform.is.null,platform.eq.unknown')
                else:
                    query = query.eq('platform', platform)
            return query

        ids = list(raw_account_ids or [])
        if not ids:
            return self._execute(build().order('created_at', desc=True).limit(limit))
        rows = self._select_in(lambda: build(', created_at'), 'id', ids)
        return self._newest_first(rows, limit, sort_keys=('created_at',))

    def upsert_raw_account_extraction(self, row: dict) -> None:
        self._execute(
            self.client.table('raw_account_extractions').upsert(
                {**row, 'updated_at': _now()},
                on_conflict='raw_account_id,extractor_version',
            )
        )

    # ------------------------------------------------------------------ #
    # Identities
    # ------------------------------------------------------------------ #

    def _linked_raw_account_ids(self) -> set:
        rows = self._select_all(
            lambda: self.client.table('creator_identity_accounts').select('raw_account_id')
        )
        return {r['raw_account_id'] for r in rows}

    def fetch_unlinked_raw_accounts(self, discovery_run_id: Optional[str] = None,
                                    limit: int = 500) -> list:
        """Raw accounts with no identity link yet, oldest first."""
        linked = self._linked_raw_account_ids()
        out = []
        start = 0
        while len(out) < limit:
            query = self.client.table('raw_accounts').select(
                'id, discovery_run_id, platform, handle, title, snippet, '
                'source_url, normalized_profile_url, stan_slug, raw'
            )
            if discovery_run_id:
                query = query.eq('discovery_run_id', discovery_run_id)
            page = self._execute(query.order('created_at').range(start, start + PAGE_SIZE - 1))
            out.extend(r for r in page if r['id'] not in linked)
            if len(page) < PAGE_SIZE:
                break
            start += PAGE_SIZE
        return out[:limit]

    def count_linked_raw_accounts(self, discovery_run_id: Optional[str] = None) -> int:
        linked = self._linked_raw_account_ids()
        if not discovery_run_id:
            return len(linked)
        run_ids = {r['id'] for r in self.list_run_accounts(discovery_run_id)}
        return len(linked & run_ids)

    def find_identity_by_stan_slug(self, slug: str) -> Optional[str]:
        rows = self._execute(
            self.client.table('creator_identities').select('id')
            .eq('canonical_stan_slug', slug).limit(1)
        )
        return rows[0]['id'] if rows else None

    def find_identity_by_domain(self, domain: str) -> Optional[str]:
        rows = self._execute(
            self.client.table('creator_identities').select('id')
            .eq('canonical_personal_domain', domain).limit(1)
        )
        return rows[0]['id'] if rows else None

    def insert_identity(self, identity_id: str, stan_slug: Optional[str],
                        personal_domain: Optional[str]) -> str:
        """Plain insert; raises UniqueViolation when either anchor is taken."""
        self._execute(
            self.client.table('creator_identities').insert({
                'id': identity_id,
                'canonical_stan_slug': stan_slug,
                'canonical_personal_domain': personal_domain,
            })
        )
        return identity_id

    def link_account(self, row: dict) -> None:
        """Link a raw account to an identity; no-op when it is already linked."""
        self._execute(
            self.client.table('creator_identity_accounts').upsert(
                {'id': new_id('cia'), **row},
                on_conflict='raw_account_id',
                ignore_duplicates=True,
            )
        )

    def find_candidate_by_handle(self, handle: str, platform: str) -> Optional[str]:
        """Most recent identity linked to the same handle on another platform."""
        rows = self._execute(
            self.client.table('creator_identity_accounts').select('creator_identity_id')
            .eq('handle', handle).neq('platform', platform)
            .order('created_at', desc=True).limit(1)
        )
        return rows[0]['creator_identity_id'] if rows else None

    def upsert_merge_candidate(self, row: dict) -> None:
        self._execute(
            self.client.table('identity_merge_candidates').upsert(
                {**row, 'updated_at': _now()},
                on_conflict='raw_account_id',
            )
        )

    # ------------------------------------------------------------------ #
    # Stan profiles
    # ------------------------------------------------------------------ #

    def _identity_ids_with(self, table: str, identity_ids: list) -> set:
        rows = self._select_in(
            lambda: self.client.table(table).select('creator_identity_id'),
            'creator_identity_id', identity_ids,
        )
        return {r['creator_identity_id'] for r in rows}

    def _newest_identities(self, identity_ids: Iterable[str], limit: int, stan_only: bool = False) -> list:
        """Identities among identity_ids, most recently updated first, trimmed to limit."""
        columns = 'id, canonical_stan_slug, ' if stan_only else 'id, '

        def build():
            query = self.client.table('creator_identities').select(columns + 'updated_at, created_at')
            if stan_only:
                query = query.not_.is_('canonical_stan_slug', 'null')
            return query

        return self._newest_first(self._select_in(build, 'id', sorted(identity_ids)), limit)

    def select_stan_identities(self, creator_identity_id: Optional[str] = None,
                               stan_slug: Optional[str] = None,
                               discovery_run_id: Optional[str] = None,
                               limit: int = 100) -> list:
        """
        Identities to crawl, each as {id, canonical_stan_slug, has_existing_profile}.
        Selection order: explicit id, explicit slug, identities linked to a run,
        then any identity with a slug (most recently updated first).
        """
        base = self.client.table('creator_identities').select('id, canonical_stan_slug')
        if creator_identity_id:
            rows = self._execute(base.eq('id', creator_identity_id).limit(1))
        elif stan_slug:
            rows = self._execute(base.eq('canonical_stan_slug', stan_slug).limit(1))
        elif discovery_run_id:
            run_ids = [r['id'] for r in self.list_run_accounts(discovery_run_id)]
            links = self._select_in(
                lambda: self.client.table('creator_identity_accounts').select('creator_identity_id'),
                'raw_account_id', run_ids,
            )
            identity_ids = {r['creator_identity_id'] for r in links}
            rows = self._newest_identities(identity_ids, limit, stan_only=True)
        else:
            rows = self._execute(
                base.not_.is_('canonical_stan_slug', 'null')
                .order('updated_at', desc=True, nullsfirst=False)
                .order('created_at', desc=True).limit(limit)
            )

        existing = self._identity_ids_with('creator_stan_profiles', [r['id'] for r in rows])
        return [{**r, 'has_existing_profile': r['id'] in existing} for r in rows]

    def upsert_stan_profile(self, row: dict) -> None:
        self._execute(
            self.client.table('creator_stan_profiles').upsert(
                {**row, 'updated_at': _now()},
                on_conflict='creator_identity_id',
            )
        )

    def get_stan_profile(self, creator_identity_id: str) -> Optional[dict]:
        rows = self._execute(
            self.client.table('creator_stan_profiles').select('*')
            .eq('creator_identity_id', creator_identity_id).limit(1)
        )
        return rows[0] if rows else None

    # ------------------------------------------------------------------ #
    # Social signals
    # ------------------------------------------------------------------ #

    def select_social_identities(self, creator_identity_id: Optional[str] = None,
                                 limit: int = 250, force: bool = False) -> list:
        """
        Identities to enrich, each as {id, outbound_socials, has_existing_social}.

        Without an explicit id: identities that have linked accounts or stan
        outbound socials, and (unless force) no social rows yet.
        """
        if creator_identity_id:
            rows = self._execute(
                self.client.table('creator_identities').select('id')
                .eq('id', creator_identity_id).limit(1)
            )
        else:
            linked = self._select_all(
                lambda: self.client.table('creator_identity_accounts').select('creator_identity_id')
            )
            with_socials = self._select_all(
                lambda: self.client.table('creator_stan_profiles').select('creator_identity_id')
                .not_.is_('outbound_socials', 'null')
            )
            candidate_ids = {r['creator_identity_id'] for r in linked}
            candidate_ids |= {r['creator_identity_id'] for r in with_socials}
            if not force:
                enriched = self._select_all(
                    lambda: self.client.table('creator_social_profiles').select('creator_identity_id')
                )
                candidate_ids -= {r['creator_identity_id'] for r in enriched}
            rows = self._newest_identities(candidate_ids, limit)

        ids = [r['id'] for r in rows]
        socials = {
            p['creator_identity_id']: p.get('outbound_socials')
            for p in self._select_in(
                lambda: self.client.table('creator_stan_profiles')
                .select('creator_identity_id, outbound_socials'),
                'creator_identity_id', ids,
            )
        }
        existing = self._identity_ids_with('creator_social_profiles', ids)
        return [
            {'id': i, 'outbound_socials': socials.get(i), 'has_existing_social': i in existing}
            for i in ids
        ]

    def list_identity_accounts(self, creator_identity_id: str) -> list:
        """Raw accounts linked to an identity, with the link's platform."""
        links = self._execute(
            self.client.table('creator_identity_accounts')
            .select('raw_account_id, platform, handle, normalized_profile_url, source_url')
            .eq('creator_identity_id', creator_identity_id)
        )
        if not links:
            return []
        raw = {
            r['id']: r for r in self._select_in(
                lambda: self.client.table('raw_accounts')
                .select('id, query, title, snippet, follower_count_estimate'),
                'id', [l['raw_account_id'] for l in links],
            )
        }
        out = []
        for link in links:
            account = raw.get(link['raw_account_id'], {})
            out.append({
                **link,
                'query': account.get('query'),
                'title': account.get('title'),
                'snippet': account.get('snippet'),
                'follower_count_estimate': account.get('follower_count_estimate'),
            })
        return out

    def fetch_account_signals(self, creator_identity_id: str) -> list:
        """One {platform, follower_count_estimate} row per linked raw account."""
        return [
            {'platform': a.get('platform'), 'follower_count_estimate': a.get('follower_count_estimate')}
            for a in self.list_identity_accounts(creator_identity_id)
        ]

    def upsert_social_signal(self, row: dict) -> None:
        self._execute(
            self.client.table('creator_social_profiles').upsert(
                {**row, 'updated_at': _now()},
                on_conflict='creator_identity_id,platform',
            )
        )

    def list_social_profiles(self, creator_identity_id: str) -> list:
        return self._execute(
            self.client.table('creator_social_profiles').select('*')
            .eq('creator_identity_id', creator_identity_id)
        )

    # ------------------------------------------------------------------ #
    # Downstream creators
    # ------------------------------------------------------------------ #

    def find_creator_by_identity(self, creator_identity_id: str) -> Optional[dict]:
        rows = self._execute(
            self.client.table('creators').select('id, platforms, metrics')
            .eq('creator_identity_id', creator_identity_id).limit(1)
        )
        return rows[0] if rows else None

    def update_creator(self, creator_id: str, fields: dict) -> None:
        self._execute(self.client.table('creators').update(fields).eq('id', creator_id))
