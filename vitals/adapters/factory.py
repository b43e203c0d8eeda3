"""Provider factory: returns the fixture or live provider based on config.

In fixture mode the provider serves canned payloads from
``settings.fixture_path`` (or nothing when unset).
In live mode the provider calls the Google Fit REST API.
Both implement the same HealthProvider protocol.
"""

from shared.config import settings
from vitals.adapters.protocol import HealthProvider


def get_provider() -> HealthProvider:
    """Return the provider for the configured adapter_mode."""
    if settings.adapter_mode == "live":
        from vitals.adapters.google_fit_live import GoogleFitLiveProvider

        return GoogleFitLiveProvider()

    from vitals.adapters.fixture import FixtureProvider

    if settings.fixture_path:
        return FixtureProvider.from_file(settings.fixture_path, account_id=settings.google_fit_account_id)
    return FixtureProvider(account_id=settings.google_fit_account_id)
