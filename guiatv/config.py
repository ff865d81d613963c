from pathlib import Path
import logging

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class CustomSettings(BaseSettings):
    """Application settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    database_path: str = "./data/guiatv.db"
    object_store_root: str = "./data/objects"
    object_store_base_url: str = ""

    feed_url: str = "https://raw.githubusercontent.com/davidmuma/EPG_dobleM/master/guia.xml"
    feed_rebuild_url: str = "https://raw.githubusercontent.com/davidmuma/EPG_dobleM/master/guiatv_sincolor.xml.gz"
    feed_timeout_sec: float = 20.0
    feed_max_retries: int = 3
    feed_retry_backoff: float = 2.0
    feed_chunk_size: int = 64 * 1024
    epg_parse_timeout_sec: int = 600  # XML parsing timeout, 0 disables timeout

    description_max_length: int = 500
    batch_write_limit: int = 500
    purge_page_size: int = 500
    curate_page_size: int = 10

    channels_collection: str = "channels"
    curated_collection: str = "curated_channels"
    xml_cache_prefix: str = "epg_xml"
    json_cache_prefix: str = "epg_json"
    icon_prefix: str = "channel_icons"
    mirror_channel_icons: bool = True

    signed_url_secret: str = "change-me"
    signed_url_ttl_minutes: int = 360

    host: str = "0.0.0.0"
    port: int = 8000

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("feed_url", "feed_rebuild_url")
    @classmethod
    def validate_feed_urls(cls, value: str, info) -> str:
        """Validate feed URLs are HTTP/HTTPS."""
        value = value.strip()
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError(f"{info.field_name} must be HTTP/HTTPS: {value}")
        return value

    @field_validator("database_path", "object_store_root")
    @classmethod
    def validate_storage_path(cls, value: str, info) -> str:
        """Validate storage paths are accessible."""
        path = Path(value)
        target = path.parent if info.field_name == "database_path" else path
        try:
            target.mkdir(parents=True, exist_ok=True)
            return value
        except (OSError, PermissionError) as exc:
            raise ValueError(f"Cannot access {info.field_name} '{value}': {exc}") from exc

    @field_validator("feed_timeout_sec", "feed_retry_backoff")
    @classmethod
    def validate_positive_floats(cls, value: float, info) -> float:
        """Ensure floating-point feed settings are positive."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("epg_parse_timeout_sec")
    @classmethod
    def validate_parse_timeout(cls, value: int) -> int:
        """Validate XML parsing timeout (seconds)."""
        if value < 0:
            raise ValueError("epg_parse_timeout_sec must be >= 0")
        return value

    @field_validator(
        "feed_max_retries",
        "feed_chunk_size",
        "description_max_length",
        "purge_page_size",
        "curate_page_size",
        "signed_url_ttl_minutes",
    )
    @classmethod
    def validate_positive_ints(cls, value: int, info) -> int:
        """Ensure integer settings are positive."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("batch_write_limit")
    @classmethod
    def validate_batch_limit(cls, value: int) -> int:
        """The document store rejects commits above 500 operations."""
        if value <= 0 or value > 500:
            raise ValueError("batch_write_limit must be between 1 and 500")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate logging level name."""
        normalized = value.upper()
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if normalized not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return normalized

    @model_validator(mode="after")
    def validate_collections(self):
        """Validate cross-field configuration."""
        if self.channels_collection == self.curated_collection:
            raise ValueError("channels_collection and curated_collection must differ")

        if self.signed_url_secret == "change-me":
            logger.warning("SIGNED_URL_SECRET not configured - using the insecure default")

        return self

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.info("Configuration loaded:")
        logger.info("  Database: %s", self.database_path)
        logger.info("  Object Store: %s", self.object_store_root)
        logger.info("  Feed URL: %s", self.feed_url)
        logger.info("  Rebuild Feed URL: %s", self.feed_rebuild_url)
        logger.info("  Feed Timeout: %ss (retries: %s)", self.feed_timeout_sec, self.feed_max_retries)
        logger.info(
            "  Parse Timeout: %s seconds",
            self.epg_parse_timeout_sec or "disabled",
        )
        logger.info("  Batch Write Limit: %s", self.batch_write_limit)
        logger.info(
            "  Collections: %s -> %s",
            self.channels_collection,
            self.curated_collection,
        )


settings = CustomSettings()


def setup_logging(level: str | None = None) -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
