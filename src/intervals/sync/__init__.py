"""Interval sync infrastructure.

Modules:
    scheduler — Periodic + resume-triggered sync cycles (fetch → aggregate → submit)
    client    — Submitters: direct-to-store and HTTP with endpoint resolution
    dedup     — Record dedup keys and ON CONFLICT upsert query builder
"""
