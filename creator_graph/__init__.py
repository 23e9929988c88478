"""
creator_graph — creator discovery, identity resolution and compatibility scoring.

Pipeline steps:
  1. crawl          — run platform search agents (SerpAPI / Google / DuckDuckGo)
  2. normalize      — canonical profile URL, handle, stan slug, follower estimate
  3. ingest         — upsert raw accounts per discovery run + coverage report
  4. extract        — mine raw accounts for stan/follower/profile signals
  5. resolve        — merge raw accounts into creator identities
  6. enrich-stan    — scrape each identity's stan.store page
  7. enrich-social  — estimate per-platform reach and engagement
  8. signals        — derive niche/topics/audience/buying intent
  9. score          — brand <-> creator compatibility

Entry point: python -m creator_graph.run <command> --help
"""

__version__ = '0.3.0'
