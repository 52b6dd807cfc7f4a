"""
Recommendation pipeline.

Responsibilities:
- Drive one search end to end: plan, source, route, rank, select
- Emit log, progress and terminal events for streaming to the client
- Own the per-session state machine (INPUT -> PROCESSING -> RESULTS | NO_RESULTS | ERROR)
"""
