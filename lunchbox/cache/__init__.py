"""
Two-tier cache for provider lookups.

Responsibilities:
- Front the search, details and distance lookups with an in-process L1 layer
  and a shared, longer-lived L2 store (memory or Redis).
- Round origin coordinates so nearby users share cache buckets.
- Write L2 in the background so a slow or failing store never blocks a run.
- Count hits and misses per cache for cost reporting.
"""
