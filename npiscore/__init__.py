# ========================
# npiscore/__init__.py
# ========================

"""
NPI Score

Offline pipeline that turns the public Medicare provider-and-service extract
into per-provider aggregates, specialty benchmarks, an embedded SQLite store,
a 0-100 revenue score per provider, and a replicated PostgreSQL copy.
"""

__version__ = "1.0.0"
