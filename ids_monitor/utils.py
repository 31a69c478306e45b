import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = Path('config/config.yaml')
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

DEFAULT_CONFIG: Dict[str, Any] = {
    'server_url': 'http://localhost:5000',
    'data_source': 'data/sample_flows.csv',
    'data_refresh_interval': 30.0,
    'status_poll_interval': 2.0,
    'request_timeout': 5.0,
    'fetch_attempts': 1,
    'top_sources_limit': 10,
    'event_name': 'attack_detected',
    'log_level': 'INFO',
    'log_file': 'logs/app.log',
    'api_host': '127.0.0.1',
    'api_port': 8000,
}

ENV_OVERRIDES = {
    'IDS_MONITOR_SERVER_URL': 'server_url',
    'IDS_MONITOR_DATA_SOURCE': 'data_source',
    'IDS_MONITOR_LOG_LEVEL': 'log_level',
}


def setup_logging(level: str = 'INFO', log_file: Optional[str] = 'logs/app.log'):
    handlers = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding='utf-8'))
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    return logging.getLogger()


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load the YAML config (if present), fill defaults and apply environment overrides."""
    load_dotenv()
    path = Path(path) if path else DEFAULT_CONFIG_PATH
    config: Dict[str, Any] = {}
    if path.exists():
        with open(path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
    if not isinstance(config, dict):
        raise ValueError(f'{path} must contain a mapping')

    for key, value in DEFAULT_CONFIG.items():
        config.setdefault(key, value)
    for env_name, key in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            config[key] = value
    return config
