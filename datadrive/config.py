from __future__ import annotations

import os
from pydantic_settings import BaseSettings
from pydantic import Field
from dotenv import load_dotenv


load_dotenv()


class Settings(BaseSettings):
    DB_URL: str = Field(default=os.getenv("DB_URL", "sqlite:///./datadrive.db"))
    JWT_SECRET: str = Field(default=os.getenv("JWT_SECRET", "change_me"))
    JWT_ALG: str = Field(default=os.getenv("JWT_ALG", "HS256"))
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(
        default=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
    )

    LOG_LEVEL: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))

    # Media object store (local directory tree, one sub-directory per bucket)
    MEDIA_ROOT: str = Field(default=os.getenv("MEDIA_ROOT", "data/media"))
    MEDIA_BUCKET: str = Field(default=os.getenv("MEDIA_BUCKET", "datadrive-photos"))
    MEDIA_PREFIX: str = Field(default=os.getenv("MEDIA_PREFIX", "requests"))

    MAX_UPLOAD_BYTES: int = Field(
        default=int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))
    )

    class Config:
        case_sensitive = False


settings = Settings()
