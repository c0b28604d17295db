import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Subscription the requests are issued for
    subscription_id: int = Field(default=1, alias="SUBSCRIPTION_ID")

    # Presence server (network phase)
    presence_server_url: str = Field(default="", alias="PRESENCE_SERVER_URL")
    presence_request_timeout: float = Field(
        default=30.0, alias="PRESENCE_REQUEST_TIMEOUT"
    )

    # Capability cache
    capability_cache_ttl_seconds: int = Field(
        default=7 * 24 * 3600, alias="CAPABILITY_CACHE_TTL_SECONDS"
    )
    availability_cache_ttl_seconds: int = Field(
        default=60, alias="AVAILABILITY_CACHE_TTL_SECONDS"
    )
    capability_cache_max_size: int = Field(
        default=1000, alias="CAPABILITY_CACHE_MAX_SIZE"
    )
    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")


global_settings = Settings.model_validate(dict(os.environ))
