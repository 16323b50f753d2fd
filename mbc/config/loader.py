import logging
import yaml
from pathlib import Path
from typing import Optional
from mbc.config.models import AppConfig

logger = logging.getLogger(__name__)

def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Loads the YAML config, falling back to defaults when the file is absent."""
    if config_path is None or not Path(config_path).exists():
        logger.debug(f"Config file {config_path} not found, using defaults")
        return AppConfig()

    with open(config_path, "r") as f:
        data = yaml.safe_load(f) or {}

    # Sections left empty in YAML come back as None
    data = {k: v for k, v in data.items() if v is not None}
    for section in data.values():
        if isinstance(section, dict):
            for key in [k for k, v in section.items() if v is None]:
                del section[key]

    return AppConfig(**data)
