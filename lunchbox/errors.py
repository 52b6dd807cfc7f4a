from __future__ import annotations


class ProviderError(Exception):
    """A search, details, routing or LLM backend failed or returned bad data.

    Recovered locally (per-unit exclusion, relaxation, backfill). Only
    surfaces to the user when it leaves zero viable candidates.
    """


class BackendUnavailableError(ProviderError):
    """The backend cannot serve requests at all (not configured, denied, down)."""


class ExhaustionError(Exception):
    """The pipeline finished without anything to show. Reported as NO_RESULTS."""


class FatalError(Exception):
    """Missing required input or an unexpected failure. Reported as ERROR."""
