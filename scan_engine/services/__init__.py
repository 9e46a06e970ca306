"""
Services module for the scan engine.

Contains:
- scan_types: Product snapshots, hits, scored results, run configuration
- confidence_scorer: Heuristic 0-100 scoring and false-positive flagging
- url_delta: URL canonicalization, hashing and new/known partitioning
- platform_router / platform_scanners: Budget split across platform scanners
- scan_progress: Stage state machine for a scan run
- scan_store: Persistence adapter over the Django ORM
- notifications: Best-effort notification dispatch
- ai_filter: Optional AI verification of scored hits
- scan_orchestrator: Stage pipeline composing all of the above
"""
