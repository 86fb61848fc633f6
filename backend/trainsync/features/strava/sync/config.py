"""
Strava sync configuration constants.

Contains all configuration values for sync behavior.
"""


class SyncConfig:
    """Configuration for sync behavior."""

    # Page size for backfill and incremental listing
    ACTIVITIES_PER_PAGE = 100

    # Page size for the quick "latest activities" sync
    RECENT_ACTIVITIES_PER_PAGE = 50

    # Incremental sync never pages further than this
    INCREMENTAL_MAX_PAGES = 5

    # Pages of the remote list cross-referenced by refresh
    REFRESH_MAX_PAGES = 5

    # Activities enriched (detail + streams) per refresh call
    ENRICH_BATCH_SIZE = 15

    # Failed enrichment attempts before an activity is no longer retried
    MAX_ENRICH_FAILURES = 3

    # ==========================================================================
    # Background sync
    # ==========================================================================
    # Users handled per background batch
    USERS_PER_BATCH = 5

    # Minimum interval between background syncs for the same user (hours)
    MIN_SYNC_INTERVAL_HOURS = 6

    # Delay between users in a background batch (seconds)
    USER_DELAY_SECONDS = 1.5

    # Background sync interval (seconds)
    BACKGROUND_SYNC_INTERVAL_SECONDS = 300  # 5 minutes
