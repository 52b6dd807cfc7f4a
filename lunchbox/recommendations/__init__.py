"""
Recommendation engine.

Responsibilities:
- Define the venue, preference and result models shared by every stage.
- Filter candidates by walking time with adaptive escalation.
- Score and rank candidates using deterministic heuristics.
- Ask the LLM for a final pick, then backfill and shuffle to a fixed size.
"""
