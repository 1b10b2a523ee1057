"""
================================================================================
QuestLog - Search Package
================================================================================
Cache-first catalog search with upstream fallback and relevance ranking.

Components:
  - classification.py - type code / relationship -> ranking bucket
  - ranking.py - text normalization and relevance ordering
  - deduplicator.py - cache-first merge and pagination
  - completeness.py - cache vs. upstream decision
  - locks.py - per-query in-flight markers
  - coordinator.py - locked upstream fetch + upsert
  - smart_search.py - the request pipeline

Import from the submodules directly (catalog.repository imports ranking).
================================================================================
"""
