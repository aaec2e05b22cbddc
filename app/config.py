# app/config.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    database_url: str = Field(..., validation_alias="DATABASE_URL")

    openai_api_key: str | None = Field(None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str | None = Field(None, validation_alias="OPENAI_BASE_URL")
    llm_model: str = Field("gpt-4o-mini", validation_alias="LLM_MODEL")
    vision_model: str = Field("gpt-4o", validation_alias="VISION_MODEL")
    llm_timeout_seconds: float = Field(30.0, validation_alias="LLM_TIMEOUT_SECONDS")

    intake_temperature: float = Field(0.0, validation_alias="INTAKE_TEMPERATURE")
    # When true, an intake reply that signals completion immediately runs
    # the summary/test/doctor generation step.
    auto_complete_intake: bool = Field(False, validation_alias="AUTO_COMPLETE_INTAKE")
    doctor_candidate_limit: int = Field(10, validation_alias="DOCTOR_CANDIDATE_LIMIT")

    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(True, validation_alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
