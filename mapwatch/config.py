"""MapWatch — Central Configuration via Pydantic Settings."""

from typing import List, Optional

from pydantic_settings import BaseSettings


def _split_csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Epic APIs ──
    epic_access_token: str = ""
    epic_x_access_token: Optional[str] = None
    epic_account_id: str = ""
    ecosystem_base_url: str = "https://api.fortnite.com/ecosystem/v1"
    discovery_base_url: str = (
        "https://fn-service-discovery-live-public.ogs.live.on.epicgames.com"
        "/api/v2/discovery/surface"
    )
    fortnite_branch: str = ""
    http_timeout_seconds: float = 30.0
    http_max_retries: int = 3
    request_timeout_seconds: float = 45.0  # Upper bound per provider call

    # ── Database ──
    database_url: str = ""

    # ── Tiers ──
    tier_hot_size: int = 1000
    tier_warm_size: int = 12000
    tier_activity_window_hours: int = 24
    tier_refresh_minutes: int = 10

    # ── Collectors ──
    hot_cadence_minutes: int = 10
    hot_lookback_minutes: int = 10
    warm_cadence_minutes: int = 30
    warm_lookback_minutes: int = 30
    cold_cadence_minutes: int = 60
    cold_lookback_minutes: int = 60
    cold_slice_size: int = 25000
    collector_requests_per_second: float = 7.0
    bulk_batch_size: int = 1000
    rotation_state_path: str = "./data/cold-rotation.json"
    daily_collection_hour: int = 1

    # ── Listing ──
    listing_surfaces: str = "CreativeDiscoverySurface_Frontend,CreativeDiscoverySurface_Browse"
    listing_regions: str = "NAE,NAW,NAC,EU,ME,OCE,BR,ASIA"
    listing_cadence_minutes: int = 10
    listing_max_pages: int = 2
    listing_requests_per_second: float = 10.0

    # ── Compaction ──
    compaction_day_of_month: int = 1
    compaction_hour: int = 2
    compaction_thresholds: str = "7:30,30:60,365:720"  # age_days:target_minutes
    daily_retention_days: int = 30

    # ── Summaries ──
    summary_cadence_minutes: int = 30
    summary_batch_size: int = 500

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        return "sqlite:///./mapwatch.db"

    @property
    def surfaces(self) -> List[str]:
        return _split_csv(self.listing_surfaces)

    @property
    def regions(self) -> List[str]:
        return _split_csv(self.listing_regions)

    @property
    def compaction_rules(self) -> List[tuple[int, int]]:
        """Parse ``compaction_thresholds`` into (age_days, target_minutes) pairs."""
        rules = []
        for part in _split_csv(self.compaction_thresholds):
            age, _, target = part.partition(":")
            rules.append((int(age), int(target)))
        return rules

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
