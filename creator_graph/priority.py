"""
priority.py — Bounded score boost for brands that name priority niches/topics.

Each priority phrase is compared with the creator's niche and leading
topics; phrases whose best similarity clears MATCH_THRESHOLD count as
matches and add

    boost = min(MAX_BOOST, 0.04 × matches + 0.07 × mean similarity)
"""

from creator_graph.modules import MatchSpec, norm, token_overlap, uniq_norm

MATCH_THRESHOLD = 0.34
MAX_BOOST = 0.16
CONTAINMENT_SIMILARITY = 0.84
TOPICS_CONSIDERED = 8


def phrase_similarity(a, b) -> float:
    """1 for equal phrases, CONTAINMENT_SIMILARITY when one contains the other, else token overlap."""
    a, b = norm(a), norm(b)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return CONTAINMENT_SIMILARITY
    return token_overlap(a, b)


def priority_targets(creator: dict) -> list:
    topics = ((creator.get('metrics') or {}).get('top_topics') or [])[:TOPICS_CONSIDERED]
    return uniq_norm([creator.get('niche')] + list(topics))


def compute_priority_boost(spec: MatchSpec, creator: dict) -> dict:
    """{boost, matches: [{phrase, target, similarity}]}; boost 0 without priorities."""
    phrases = uniq_norm(list(spec.priority_niches) + list(spec.priority_topics))
    targets = priority_targets(creator)
    matches = []
    for phrase in phrases:
        best_target, best = None, 0.0
        for target in targets:
            sim = phrase_similarity(phrase, target)
            if sim > best:
                best_target, best = target, sim
        if best >= MATCH_THRESHOLD:
            matches.append({'phrase': phrase, 'target': best_target, 'similarity': round(best, 4)})

    if not matches:
        return {'boost': 0.0, 'matches': []}

    avg = sum(m['similarity'] for m in matches) / len(matches)
    boost = min(MAX_BOOST, 0.04 * len(matches) + 0.07 * avg)
    return {'boost': round(boost, 4), 'matches': matches}


def priority_reason(matches: list) -> str:
    return 'priority fit: ' + ', '.join(m['phrase'] for m in matches)
