from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class EnvSettings(BaseSettings):
    """Secrets and overrides that should not live in the JSON config."""

    secret_key: str = Field("", alias="ADREPORT_SECRET_KEY")
    ad_bind_password: str = Field("", alias="ADREPORT_AD_BIND_PASSWORD")
    smtp_password: str = Field("", alias="ADREPORT_SMTP_PASSWORD")
    log_level: str = Field("", alias="ADREPORT_LOG_LEVEL")

    model_config = SettingsConfigDict(populate_by_name=True)


@lru_cache(maxsize=1)
def get_env() -> EnvSettings:
    return EnvSettings()
