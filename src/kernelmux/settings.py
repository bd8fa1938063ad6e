from pydantic_settings import BaseSettings, SettingsConfigDict

from kernelmux.types import ExecuteOptions
from kernelmux.utilities.logging import LogLevel


class KernelClientSettings(BaseSettings):
    """Kernel client settings.

    All settings can be configured via environment variables with the prefix
    KERNELMUX_. For example, KERNELMUX_BASE_URL=http://gateway:8888 sets
    ``base_url`` and KERNELMUX_EXECUTE__STORE_HISTORY=false turns off history
    for execute requests.
    """

    model_config = SettingsConfigDict(
        env_prefix="KERNELMUX_",
        env_file=".env",
        env_nested_delimiter="__",
        nested_model_default_partial_update=True,
        extra="ignore",
    )

    # Control plane
    base_url: str = "http://localhost:8888"
    http_timeout: float = 30.0

    log_level: LogLevel = "INFO"

    # Defaults for execute requests
    execute: ExecuteOptions = ExecuteOptions()
