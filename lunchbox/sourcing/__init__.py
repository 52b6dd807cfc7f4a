"""
Candidate sourcing.

Responsibilities:
- Cache-first text search and place details for the planned queries
- Food-type and open-today filtering
- Walking durations with primary/secondary routing fallback
- Opening-hours parsing and arrival-time open status
"""
