"""Error taxonomy shared by clients and services.

Clients translate transport problems into these types at their boundary so
services can decide per class whether a failure aborts a run or degrades it.
"""


class WrappedError(Exception):
    """Base class for all application errors."""


class ConfigurationMissing(WrappedError):
    """A required integration (Tautulli) has not been configured."""


class UpstreamFetchFailure(WrappedError):
    """Fetching a day's history from the upstream source failed."""


class MetadataFetchFailure(WrappedError):
    """Fetching the descriptor of a single item failed."""


class Cancelled(WrappedError):
    """Cooperative cancellation was observed; the run stopped cleanly."""

    def __init__(self, message: str = "Sync operation aborted by user"):
        super().__init__(message)


class CacheCorrupt(WrappedError):
    """A cached statistics document could not be parsed."""


class EnrichmentProviderFailure(WrappedError):
    """A catalog or ratings-aggregator call failed."""


class AIGenerationFailure(WrappedError):
    """The text-generation endpoint failed or returned nothing usable."""
