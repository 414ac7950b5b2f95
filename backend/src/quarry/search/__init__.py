"""Hybrid search: strategy selection, ranking, fusion and caching.

Import from the submodules directly, e.g. ``quarry.search.engine``.
"""
