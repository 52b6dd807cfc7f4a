"""
Intent planning.

Responsibilities:
- Detect an explicit cuisine in the diner's free text
- Translate other free text into search queries through the LLM
- Fall back to static per-vibe query sets when there is no free text
"""
