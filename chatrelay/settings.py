from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongodb_url: str = Field(default="mongodb://localhost:27017", validation_alias=AliasChoices("MONGODB_URL", "MONGO_URL"))
    mongodb_db: str = Field(default="chatrelay", validation_alias="MONGODB_DB")
    redis_url: Optional[str] = Field(default=None, validation_alias="REDIS_URL")

    jwt_secret: str = Field(default="change-me", validation_alias=AliasChoices("JWT_SECRET", "SECRET_KEY"))
    jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")

    fcm_service_account_file: Optional[str] = Field(default=None, validation_alias="FCM_SERVICE_ACCOUNT_FILE")
    fcm_project_id: Optional[str] = Field(default=None, validation_alias="FCM_PROJECT_ID")
    # the push gateway is rate limited; bound in-flight dispatch per process
    push_max_concurrency: int = Field(default=8, ge=1, validation_alias="PUSH_MAX_CONCURRENCY")
    push_timeout_seconds: float = Field(default=10.0, gt=0, validation_alias="PUSH_TIMEOUT_SECONDS")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=True, validation_alias="LOG_JSON")
    service_name: str = Field(default="chatrelay", validation_alias="SERVICE_NAME")


settings = Settings()
