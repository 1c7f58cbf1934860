from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

APP_NAME = "zemdocs"
KEYRING_SERVICE = "zemdocs"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve config dir for .env loading without depending on env vars from .env itself.

    Only checks sources available before .env is loaded (env var set in the
    shell, dev layout). Returns None if only platformdirs would resolve and
    that directory does not exist yet.
    """
    from_env = os.environ.get("ZEMDOCS_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    pd = Path(platformdirs.user_config_dir(APP_NAME))
    if pd.is_dir():
        return pd
    return None


# Load .env: cwd first (highest priority), then config dir (won't override)
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def _resolve_dir(env_var: str, default_subdir: str, kind: str) -> Path:
    """Resolve a directory from env var, repo layout, or platform default.

    Priority: 1) env var, 2) dev repo layout, 3) platformdirs user directory.
    """
    from_env = os.environ.get(env_var)
    if from_env:
        return Path(from_env)
    # Development layout: src/zemdocs/config.py -> ../../.. = project root
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / default_subdir
    if candidate.is_dir():
        return candidate
    if kind == "config":
        return Path(platformdirs.user_config_dir(APP_NAME))
    return Path(platformdirs.user_data_dir(APP_NAME))


def get_config_dir() -> Path:
    """Resolve config directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("ZEMDOCS_CONFIG_DIR", "config", kind="config")


def get_data_dir() -> Path:
    """Resolve data directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("ZEMDOCS_DATA_DIR", "data", kind="data")


BRT = timezone(timedelta(hours=-3))

IBGE_IMPERATRIZ = "2105302"
DEFAULT_IMPERATRIZ_URL = "https://nfse.imperatriz.ma.gov.br/api/v1/nfse"

API_TIMEOUT = 30
SYNC_PAGE_SIZE = 100
MAX_XML_SIZE = 50 * 1024 * 1024

OBJECT_KEY_PREFIX = "XML/NFS"


# --- Env helpers ---


def get_env(key: str, default: str) -> str:
    """Return the env var *key*, or *default* when unset or empty."""
    value = os.environ.get(key)
    return value if value else default


def get_env_bool(key: str, default: bool) -> bool:
    """Parse a boolean env var. Unrecognised values fall back to *default*."""
    value = os.environ.get(key, "").strip().lower()
    if value in ("1", "t", "true", "yes", "on"):
        return True
    if value in ("0", "f", "false", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int) -> int:
    """Parse an integer env var. Invalid values fall back to *default*."""
    value = os.environ.get(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# --- Settings ---


def get_database_url() -> str:
    return get_env("DATABASE_URL", f"sqlite:///{get_data_dir() / 'zemdocs.db'}")


def get_xml_storage_dir() -> Path:
    from_env = os.environ.get("XML_STORAGE_DIR")
    if from_env:
        return Path(from_env)
    return get_data_dir() / "xml"


def get_log_level() -> str:
    return get_env("LOG_LEVEL", "INFO").upper()


def scheduler_enabled() -> bool:
    return get_env_bool("SCHEDULER_ENABLED", True)


def get_sync_interval() -> str:
    """Cron expression for the recurring sync (default: every 6 hours)."""
    return get_env("SYNC_INTERVAL", "0 */6 * * *")


def get_competencia_atual() -> str:
    """Competence (YYYYMM) synchronized by the scheduler. Defaults to the current month."""
    return get_env("COMPETENCIA_ATUAL", datetime.now(BRT).strftime("%Y%m"))


def strict_issue_dates() -> bool:
    """When true, records whose issue date cannot be parsed are skipped instead of stamped with now."""
    return get_env_bool("STRICT_ISSUE_DATES", False)


def get_drain_timeout() -> int:
    """Seconds running jobs get to finish after a stop signal."""
    return get_env_int("SCHEDULER_DRAIN_TIMEOUT", 60)


# --- Keyring helpers ---


def _keyring_username(ibge: str) -> str:
    return f"token-{ibge}"


def _get_keyring_token(ibge: str) -> str | None:
    """Try to get a municipality API token from the OS keyring.

    Returns None on any failure (no backend, not stored, dbus errors, etc.).
    """
    try:
        import keyring

        return keyring.get_password(KEYRING_SERVICE, _keyring_username(ibge))
    except Exception:
        return None


def _set_keyring_token(ibge: str, token: str) -> bool:
    """Store a municipality API token in the OS keyring. Returns True on success."""
    try:
        import keyring

        keyring.set_password(KEYRING_SERVICE, _keyring_username(ibge), token)
        return True
    except Exception:
        return False


def get_api_token(token_env: str, ibge: str) -> str:
    """Return the API token for a municipality.

    Priority: 1) *token_env* env var, 2) OS keyring.
    Raises KeyError if neither source has the token.
    """
    token = os.environ.get(token_env)
    if token:
        return token
    token = _get_keyring_token(ibge)
    if token:
        return token
    raise KeyError(token_env)


# --- YAML config ---


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML file, returning the top-level dict."""
    return yaml.safe_load(path.read_text())


def _default_municipios() -> list[dict]:
    return [
        {
            "ibge": IBGE_IMPERATRIZ,
            "nome": "Imperatriz-MA",
            "provider": "imperatriz",
            "base_url": get_env("IMPERATRIZ_BASE_URL", DEFAULT_IMPERATRIZ_URL),
            "token_env": "IMPERATRIZ_TOKEN",
        }
    ]


def load_municipios() -> list[dict]:
    """Load the municipality table from config/municipios.yaml.

    Falls back to the single Imperatriz entry built from env settings when
    the file is missing or lists nothing.
    """
    path = get_config_dir() / "municipios.yaml"
    if not path.is_file():
        return _default_municipios()
    data = load_yaml(path) or {}
    entries = data.get("municipios") or []
    if not entries:
        return _default_municipios()
    return [{**e, "ibge": str(e["ibge"])} for e in entries]
