# config.py
# App configuration (YAML + environment) and operator settings defaults.
#
# Lookup order for the YAML file: explicit path -> $IPO_DESK_CONFIG -> ./ipo_desk.yaml
# $IPO_DESK_DB_URL always wins over the file's db_url.
# Values written as ${VAR} are read from the environment.

import copy
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG_FILE = "ipo_desk.yaml"
DEFAULT_DB_URL = "sqlite:///db/database.sqlite"

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

# section -> field -> default; stored settings rows are keyed "section.field"
DEFAULT_SETTINGS = {
    'company': {
        'companyName': "",
        'contactEmail': "",
        'contactPhone': "",
        'address': "",
        'defaultIpoPrice': 100,
        'defaultIpoShares': 100000,
    },
    'system': {
        'enableNotifications': True,
        'autoAllotment': False,
        'autoRefunds': False,
        'emailNotifications': False,
        'maxApplicationsPerUser': 1,
        'defaultAllotmentMode': "pro-rata",
        'theme': "system",
    },
    'security': {
        'requireStrongPassword': True,
        'sessionTimeout': 60,
        'enableTwoFactor': False,
        'auditLogging': True,
    },
}


def default_settings():
    return copy.deepcopy(DEFAULT_SETTINGS)


def _resolve_env(value):
    if not value or not isinstance(value, str):
        return value
    match = _ENV_PATTERN.fullmatch(value.strip())
    if match:
        return os.getenv(match.group(1)) or ""
    return value


@dataclass(frozen=True)
class AppConfig:
    db_url: str = DEFAULT_DB_URL
    log_level: str = "INFO"
    log_path: Optional[str] = None
    currency: str = "₹"


def load_config(path=None) -> AppConfig:
    """
    Build AppConfig from the YAML file (if any) and environment overrides.
    A missing default file is fine; an explicitly named file that does not exist is an error.
    """
    explicit = path or os.getenv("IPO_DESK_CONFIG")
    cfg_path = Path(explicit) if explicit else Path(DEFAULT_CONFIG_FILE)

    data = {}
    if cfg_path.exists():
        data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    elif explicit:
        raise FileNotFoundError(f"config file not found: {cfg_path}")

    db_url = os.getenv("IPO_DESK_DB_URL") or _resolve_env(data.get('db_url')) or DEFAULT_DB_URL
    logging_cfg = data.get('logging', {}) or {}
    log_level = str(_resolve_env(logging_cfg.get('level')) or "INFO").upper()
    log_path = _resolve_env(logging_cfg.get('path')) or None
    currency = data.get('currency') or "₹"

    _ensure_sqlite_dir(db_url)
    return AppConfig(db_url=db_url, log_level=log_level, log_path=log_path, currency=currency)


def _ensure_sqlite_dir(db_url):
    # sqlite:///relative/path.db or sqlite:////abs/path.db; in-memory needs nothing
    if not db_url.startswith("sqlite:///"):
        return
    db_file = db_url[len("sqlite:///"):]
    if not db_file or db_file == ":memory:":
        return
    Path(db_file).parent.mkdir(parents=True, exist_ok=True)
