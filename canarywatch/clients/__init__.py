"""Clients for external services.

Each client follows the same pattern:
- Accepts credentials in __init__
- Exposes an `is_available` property (True when configured)
- Returns realistic mock data when not configured
- Uses httpx for real HTTP calls
"""

from canarywatch.clients.posthog import AnalyticsUnavailableError, PostHogClient

__all__ = ["AnalyticsUnavailableError", "PostHogClient"]
