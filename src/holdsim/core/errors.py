"""Exception types raised by the simulation core."""

from __future__ import annotations


class HoldsimError(Exception):
    """Base class for all simulation errors."""


class CatalogConfigError(HoldsimError):
    """The sector/niche catalog is malformed or missing a template.

    Fatal for catalog loading; never raised from inside a tick.
    """


class DataIntegrityError(HoldsimError, KeyError):
    """A record addressed by id does not exist.

    Aborts the current tick; the round stays non-COMPLETED so the next
    poll retries it.
    """

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} '{record_id}' not found")

    def __str__(self) -> str:
        return f"{self.kind} '{self.record_id}' not found"
