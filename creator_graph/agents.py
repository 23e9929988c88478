"""
agents.py — Platform-targeted search agents.

Each agent owns a fixed set of search queries and the rules a result must
satisfy to count for it: host allow-list (exact or subdomain), an optional
path prefix, and required terms that must all appear in url+title+snippet.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from creator_graph.normalize import parse_http_url


@dataclass(frozen=True)
class AgentPlan:
    id: str
    label: str
    platform: str
    queries: tuple
    host_allow: tuple
    required_path_prefix: Optional[str] = None
    required_all_terms: tuple = field(default_factory=tuple)
    required_any_terms: tuple = field(default_factory=tuple)

    def url_matches(self, url: str) -> bool:
        parts = parse_http_url(url)
        if not parts:
            return False
        host = parts.hostname.lower()
        if host.startswith('www.'):
            host = host[4:]
        if not any(host == allow or host.endswith('.' + allow) for allow in self.host_allow):
            return False
        if self.required_path_prefix:
            return parts.path.lower().startswith(self.required_path_prefix.lower())
        return True

    def text_matches(self, url: str, title: str, snippet: str) -> bool:
        blob = f'{url}\n{title}\n{snippet}'.lower()
        if any(term.lower() not in blob for term in self.required_all_terms):
            return False
        if self.required_any_terms:
            return any(term.lower() in blob for term in self.required_any_terms)
        return True

    def to_definition(self) -> dict:
        return {
            'id': self.id,
            'label': self.label,
            'platform': self.platform,
            'queries': list(self.queries),
        }


AGENTS = (
    AgentPlan(
        id='x_stan_creators',
        label='X creators with stan.store',
        platform='x',
        queries=('site:x.com "Website: stan.store/" "followers"',),
        host_allow=('x.com', 'twitter.com'),
        required_all_terms=('stan.store',),
    ),
    AgentPlan(
        id='instagram_stan_creators',
        label='Instagram creators with stan.store',
        platform='instagram',
        queries=('site:instagram.com "https://stan.store/" " followers"',),
        host_allow=('instagram.com',),
        required_all_terms=('stan.store',),
    ),
    AgentPlan(
        id='linkedin_stan_creators',
        label='LinkedIn creators with stan.store',
        platform='linkedin',
        queries=('site:linkedin.com/in "stan.store/"',),
        host_allow=('linkedin.com',),
        required_path_prefix='/in',
        required_all_terms=('stan.store',),
    ),
    AgentPlan(
        id='tiktok_stan_creators',
        label='TikTok + stan.store',
        platform='tiktok',
        queries=('site:tiktok.com "https://stan.store/"',),
        host_allow=('tiktok.com',),
        required_all_terms=('stan.store',),
    ),
    AgentPlan(
        id='youtube_stan_creators',
        label='YouTube + stan.store + subscribers',
        platform='youtube',
        queries=('site:youtube.com "stan.store/" "subscribers"',),
        host_allow=('youtube.com', 'youtu.be'),
        required_all_terms=('stan.store',),
    ),
)

AGENT_IDS = tuple(a.id for a in AGENTS)


def list_agents() -> list[dict]:
    return [a.to_definition() for a in AGENTS]


def select_agents(agent_ids: Optional[Iterable[str]] = None) -> list[AgentPlan]:
    """All agents when no ids are given; otherwise the matching ones, in catalog order."""
    ids = set(agent_ids or ())
    if not ids:
        return list(AGENTS)
    return [a for a in AGENTS if a.id in ids]
