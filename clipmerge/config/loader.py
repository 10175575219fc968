import os
import yaml
from pathlib import Path
from typing import Mapping, Optional
from dotenv import load_dotenv
from .models import AppConfig

# Environment variable -> (section, field)
ENV_OVERRIDES = {
    "PORT": ("server", "port"),
    "API_KEY": ("server", "api_key"),
    "FFMPEG_PATH": ("ffmpeg", "ffmpeg_path"),
    "VIDEOS_DIR": ("storage", "videos_dir"),
}

def load_config(config_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Loads YAML config (if present) into AppConfig, then applies env overrides.

    A missing file is not an error: the service runs on defaults plus
    environment, which is how it is deployed on PaaS hosts.
    """
    data = {}
    if config_path is not None and config_path.exists():
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

    if environ is None:
        load_dotenv()
        environ = os.environ

    for var, (section, field) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            data.setdefault(section, {})
            data[section][field] = value

    return AppConfig(**data)
