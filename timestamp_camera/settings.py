import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

DEFAULT_PORT = 5001
DEFAULT_LOG_DIR = "logs"
DEFAULT_N_IMAGES = 5
DEFAULT_RESOURCE_NAME = "camera"
MAX_LOG_SIZE_MB = 10
MAX_LOG_FILES = 5
CHUNK_SIZE = 64 * 1024


@dataclass
class Settings:
    port: int = DEFAULT_PORT
    node_id: str = field(default_factory=lambda: f"timestamp_camera_{os.getpid()}")
    log_dir: str = DEFAULT_LOG_DIR
    n_images: int = DEFAULT_N_IMAGES
    resource_name: str = DEFAULT_RESOURCE_NAME


def load_settings() -> Settings:
    """Reads process settings from the environment (and a .env file if present)."""
    load_dotenv()
    return Settings(
        port=int(os.getenv("PORT", DEFAULT_PORT)),
        node_id=os.getenv("NODE_ID", f"timestamp_camera_{os.getpid()}"),
        log_dir=os.getenv("LOG_DIR", DEFAULT_LOG_DIR),
        n_images=int(os.getenv("N_IMAGES", DEFAULT_N_IMAGES)),
        resource_name=os.getenv("RESOURCE_NAME", DEFAULT_RESOURCE_NAME),
    )
