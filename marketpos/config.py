# Configuration - config.json merged over defaults

import json
import logging
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CONFIG_FILE = Path(__file__).resolve().parent.parent / 'config.json'

DEFAULT_CONFIG: Dict[str, Any] = {
    'db_path': 'marketpos.db',
    'log_path': None,
    'log_level': 'INFO',
    'log_console': True,
    'printer_device': None,
    'auto_print': True,
    'open_timeout': 5.0,
    'write_timeout': 5.0,
    'http_port': 8080,
    'terminal_id': 'till-1',
    'receipt': {},
    'backup_api_url': None,
    'api_key': None,
    'backup_sales_path': '/api/pos/sales',
}


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Read the JSON config; a missing file means defaults"""
    config = deepcopy(DEFAULT_CONFIG)
    config_path = Path(path) if path else CONFIG_FILE
    if not config_path.exists():
        return config

    with open(config_path, encoding='utf-8') as f:
        loaded = json.load(f)
    if not isinstance(loaded, dict):
        raise ValueError(f"{config_path} must contain a JSON object")

    for key, value in loaded.items():
        if key == 'receipt' and isinstance(value, dict):
            config['receipt'].update(value)
        else:
            config[key] = value
    logger.debug("Loaded config from %s", config_path)
    return config
