"""Flask application settings."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from marketplace.config import AppConfig, load_env
from marketplace.services.logging import log_event


@dataclass
class MarketplaceConfig:
    """Wraps the service-level AppConfig with the paths the web app owns."""

    app: AppConfig
    project_root: Path

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def settings_file(self) -> Path:
        return self.data_dir / "settings.json"

    @property
    def secret_key(self) -> str:
        return self.app.secret_key

    @classmethod
    def load(cls, project_root: Path | None = None) -> "MarketplaceConfig":
        """Build settings from data/settings.json and the environment, creating data/ if needed."""

        root = project_root or Path(__file__).resolve().parent
        data_dir = root / "data"
        data_dir.mkdir(parents=True, exist_ok=True)

        settings_file = data_dir / "settings.json"
        # seed an editable settings file with the non-secret defaults
        if not settings_file.exists():
            default_settings = {
                "CURRENCY": "TND",
                "LOG_LEVEL": "INFO",
                "PENDING_ORDER_TTL_HOURS": 24,
                "DELIVERED_COMPLETION_DAYS": 7,
                "LOW_STOCK_THRESHOLD": 10,
            }
            settings_file.write_text(
                json.dumps(default_settings, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            log_event("info", "config.settings_created", path=str(settings_file))

        return cls(app=load_env(settings_file), project_root=root)
