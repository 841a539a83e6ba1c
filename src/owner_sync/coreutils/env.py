from dotenv import load_dotenv
import os

load_dotenv()  # take environment variables from .env


def env_get(key: str, default: str | None = None) -> str | None:
    """Get environment variable or return default."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    return value


def env_bool(key: str, default: bool = False) -> bool:
    """Read a boolean flag such as 1/true/yes from the environment."""
    value = env_get(key)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
