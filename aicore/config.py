from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    env: str = "dev"
    database_url: str = "sqlite:///./data/aicore.db"
    log_level: str = "INFO"

    # Analytics window used when a caller doesn't pass one
    default_period: str = "30 days"

    default_page_size: int = 10
    max_page_size: int = 100

    seed_system_templates: bool = True

    cost_decimal_places: int = 8

    def model_post_init(self, __context):
        if self.env == "prod" and self.database_url.startswith("sqlite"):
            raise ValueError(
                "Production requires explicit DATABASE_URL (not SQLite)"
            )

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
