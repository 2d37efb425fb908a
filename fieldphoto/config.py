from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./data/db.sqlite3"
    api_key: str = ""  # empty = no auth check (local dev)
    log_level: str = "INFO"
    storage_dir: str = "./data/storage"
    storage_bucket: str = "job-photos"
    public_base_url: str = "/storage"
    max_photo_size_bytes: int = 20 * 1024 * 1024  # 20MB
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # device side
    queue_database_url: str = "sqlite+aiosqlite:///./data/queue.sqlite3"
    server_base_url: str = "http://localhost:8000"
    probe_path: str = "/health"
    probe_interval_seconds: float = 5.0
    drain_interval_seconds: float = 30.0
    request_timeout_seconds: float = 30.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
