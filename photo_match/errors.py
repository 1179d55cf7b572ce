"""
Error types raised by the matching engine.

Per-asset errors (AssetError subclasses) are absorbed by the engine and
reported in the per-call error summary. Configuration errors are raised
to the caller before any work starts.
"""


class MatchingError(Exception):
    """Base class for all photo_match errors."""


class AssetError(MatchingError):
    """A failure tied to a single asset. Never aborts a batch."""

    kind = "asset_error"

    def __init__(self, asset_id, reason: str = ""):
        self.asset_id = asset_id
        self.reason = reason
        message = f"{asset_id!r}: {reason}" if reason else repr(asset_id)
        super().__init__(message)


class ExtractionFailed(AssetError):
    """The image could not be decoded or has no pixels."""

    kind = "extraction_failed"


class NotFound(AssetError):
    """The asset id is not known to the store."""

    kind = "not_found"


class EmbeddingFailed(AssetError):
    """The external embedding capability failed for this asset."""

    kind = "embedding_failed"


class InvalidWeights(MatchingError, ValueError):
    """Scoring weights are negative or do not sum to 1."""
