import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name, default):
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


class Settings(BaseModel):
    rules_file: str = os.getenv("MOCK_RULES_FILE", "mocks.json")
    proxy_host: str = os.getenv("MOCK_PROXY_HOST", "127.0.0.1")
    proxy_port: int = _env_int("MOCK_PROXY_PORT", 8080)
    cert_dir: str = os.getenv("MOCK_CERT_DIR", "certs")
    enabled: bool = _env_bool("MOCK_ENABLED", True)
    log: bool = _env_bool("MOCK_LOG", True)
    verbose: bool = _env_bool("MOCK_VERBOSE", True)


settings = Settings()
