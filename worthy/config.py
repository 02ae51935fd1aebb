"""Environment-driven configuration shared by the API and the CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

DEFAULT_DB_PATH = Path("data") / "worthy.db"
DEFAULT_BASE_CURRENCY = "USD"


@dataclass(frozen=True)
class Config:
    db_path: Path = DEFAULT_DB_PATH
    env: str = "prod"
    allowed_origins: List[str] = field(default_factory=list)
    base_currency: str = DEFAULT_BASE_CURRENCY

    @property
    def is_dev(self) -> bool:
        return self.env in {"dev", "development"}


def load_config() -> Config:
    origins = os.getenv("WORTHY_ALLOWED_ORIGINS", "")
    return Config(
        db_path=Path(os.getenv("WORTHY_DB_PATH", str(DEFAULT_DB_PATH))),
        env=os.getenv("WORTHY_ENV", "prod").lower(),
        allowed_origins=[origin.strip() for origin in origins.split(",") if origin.strip()],
        base_currency=os.getenv("WORTHY_BASE_CURRENCY", DEFAULT_BASE_CURRENCY).strip().upper()
        or DEFAULT_BASE_CURRENCY,
    )
