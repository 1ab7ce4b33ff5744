import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

MIN_INTERVAL_HOURS = 1
MAX_INTERVAL_HOURS = 24


class SourceConfig(BaseModel):
    """Outage table source configuration"""
    base_url: str = Field(
        default="https://dp.rosseti-yug.ru/res/",
        description="Outage search page URL"
    )
    state: int = Field(default=549, description="Region identifier used by the search form")
    district: str = Field(default="Мясниковский", description="District filter sent to the search form")
    places: str = Field(default="х.Ленинаван", description="Settlement filter sent to the search form")
    my_place: str = Field(
        default="Ленинаван",
        description="Only rows whose place contains this text are kept"
    )
    lookback_days: int = Field(default=30, ge=0, description="Search range start, days before today")
    page_timeout: int = Field(default=60, gt=0, description="Page load timeout in seconds")
    table_timeout: int = Field(default=20, gt=0, description="Wait for the results table, in seconds")
    headless: bool = Field(default=True, description="Run the browser headless")


class AppConfig(BaseModel):
    """Application configuration"""

    bot_token: str = Field(description="Telegram Bot Token")

    admin_chat_ids: List[int] = Field(
        default_factory=list,
        description="Chat IDs allowed to run admin commands"
    )

    default_interval_hours: int = Field(
        default=6,
        description="Check interval used until an admin sets one"
    )

    check_on_startup: bool = Field(
        default=False,
        description="Run one check right after the bot starts"
    )

    only_upcoming: bool = Field(
        default=True,
        description="Ignore outages that started before today"
    )

    report_keep: int = Field(default=10, ge=1, description="Number of report files to keep")
    backup_keep: int = Field(default=7, ge=1, description="Number of database backups to keep")
    backup_hour: int = Field(default=3, ge=0, le=23, description="Hour of the daily database backup")

    source: SourceConfig = Field(default_factory=SourceConfig)

    @field_validator("default_interval_hours")
    @classmethod
    def check_interval(cls, v: int) -> int:
        if not MIN_INTERVAL_HOURS <= v <= MAX_INTERVAL_HOURS:
            raise ValueError(f"interval must be between {MIN_INTERVAL_HOURS} and {MAX_INTERVAL_HOURS} hours")
        return v

    @model_validator(mode='after')
    def normalize(self) -> 'AppConfig':
        if not self.bot_token.strip():
            raise ValueError("bot_token must not be empty")
        # 去重，保持顺序
        self.admin_chat_ids = list(dict.fromkeys(self.admin_chat_ids))
        return self

    def is_admin(self, chat_id: int) -> bool:
        return chat_id in self.admin_chat_ids


class ConfigManager:
    """Manages application configuration"""

    CONFIG_FILE = "config.json"
    DB_FILE = "data.db"

    def __init__(self, config_dir: Optional[Path] = None):
        # Default to current working directory
        self.config_dir = Path(config_dir) if config_dir else Path.cwd()
        self.config_path = self.config_dir / self.CONFIG_FILE
        self.db_path = self.config_dir / self.DB_FILE

    @property
    def reports_dir(self) -> Path:
        return self.config_dir / "reports"

    @property
    def backups_dir(self) -> Path:
        return self.config_dir / "backups"

    @property
    def log_dir(self) -> Path:
        return self.config_dir / "logs"

    def ensure_config_dir(self) -> None:
        """Ensure config directory exists"""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def load(self) -> Optional[AppConfig]:
        """Load configuration from file"""
        if not self.config_path.exists():
            return None
        with open(self.config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return AppConfig.model_validate(data)

    def save(self, config: AppConfig) -> None:
        """Save configuration to file"""
        self.ensure_config_dir()
        with open(self.config_path, "w", encoding="utf-8") as f:
            data = config.model_dump(exclude_none=True)
            json.dump(data, f, indent=2, ensure_ascii=False)

    def exists(self) -> bool:
        """Check if configuration file exists"""
        return self.config_path.exists()

    def get_db_path(self) -> Path:
        """Get database file path"""
        self.ensure_config_dir()
        return self.db_path
