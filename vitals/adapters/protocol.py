"""Provider protocol for health data sources.

Both the fixture and the live Google Fit provider implement this interface.
The sync orchestrator depends only on the protocol, never on concrete
providers.
"""

from typing import Protocol, runtime_checkable

from vitals.domain.models import MetricKind, SampleRecord, Segment


@runtime_checkable
class HealthProvider(Protocol):
    """Common interface for all health data providers.

    Empty results are not errors. Implementations raise
    NotAuthenticatedError when there is no usable session and
    TransientFetchError for network or decoding failures.
    """

    source_name: str

    async def fetch_samples(
        self,
        kind: MetricKind,
        start_millis: int,
        end_millis: int,
        bucket_millis: int | None = None,
    ) -> list[SampleRecord]:
        """Fetch samples of ``kind`` in [start, end).

        With ``bucket_millis`` the provider aggregates into fixed-width
        buckets stamped at the bucket start; without it raw points are
        returned.
        """
        ...

    async def fetch_aggregate(
        self, kind: MetricKind, start_millis: int, end_millis: int
    ) -> SampleRecord | None:
        """One record carrying the provider-side total of ``kind`` over the range."""
        ...

    async def fetch_segments(
        self, kind: MetricKind, start_millis: int, end_millis: int
    ) -> list[Segment]:
        """Labelled sleep or activity segments overlapping the range."""
        ...
