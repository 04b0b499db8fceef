from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


# settings come from the environment or a .env file
class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # storage, in-memory sqlite unless DATABASE_URL says otherwise
    database_url: str = "sqlite://"

    # rest server
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # grpc server
    grpc_host: str = "0.0.0.0"
    grpc_port: int = 50051
    grpc_max_workers: int = 10

    # pagination
    default_page_size: int = 10
    max_page_size: int = 100

    # logging
    log_level: str = "INFO"
    log_format: str = "text"  # 'text' or 'json'


@lru_cache
def get_settings() -> Settings:
    return Settings()
