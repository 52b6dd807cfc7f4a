"""
External venue and routing providers.

Responsibilities:
- Text search and place details against the Google Places API (New)
- Walking durations from the Google Distance Matrix API, with OSRM as the
  secondary routing backend
- Normalise provider payloads into ``Venue`` and ``Duration`` models
"""
