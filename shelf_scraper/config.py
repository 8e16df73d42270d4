from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping

from .rate_limiter import clamp_rate

DEFAULT_ORIGIN = "https://www.audible.com"


@dataclass
class ScraperConfig:
    origin: str = DEFAULT_ORIGIN
    library_path: str = "/library/titles"
    wishlist_path: str = "/library/wishlist"
    include_wishlist: bool = True
    enrich_details: bool = True
    requests_per_second: float = 10
    max_retries: int = 3
    base_delay: float = 1.0
    rate_limit_cooldown: float = 30.0
    page_delay: float = 0.5
    request_timeout: int = 20
    backend: str = "curl"
    impersonate: str = "chrome120"
    checkpoint_interval: int = 10
    idle_timeout: float = 30.0

    def __post_init__(self) -> None:
        self.origin = self.origin.rstrip("/")
        self.requests_per_second = clamp_rate(self.requests_per_second)
        self.checkpoint_interval = max(1, int(self.checkpoint_interval))

    @property
    def library_url(self) -> str:
        return self.origin + self.library_path

    @property
    def wishlist_url(self) -> str:
        return self.origin + self.wishlist_path

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ScraperConfig":
        """Build a config from settings, ignoring unknown and None values."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})

    def merged(self, overrides: Mapping[str, Any]) -> "ScraperConfig":
        data = self.to_dict()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return self.from_mapping(data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
