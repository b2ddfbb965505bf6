import os
import toml
import pathlib
from functools import lru_cache
from typing import Optional
from google.cloud import secretmanager

_ENV_PATH = pathlib.Path(os.environ.get("FEED_CYCLE_CONFIG", "config/env.toml"))

_PROJECT_VARS = ("GCP_PROJECT", "GOOGLE_CLOUD_PROJECT", "GOOGLE_CLOUD_PROJECT_NUMBER")

# key -> OS environment variables checked after the key's own upper-case name
ENV_MAP = {
    "gcp_project_id": ("GCP_PROJECT", "GOOGLE_CLOUD_PROJECT"),
    "firestore_project": ("FIRESTORE_PROJECT",),
    "cycle_health_collection": ("CYCLE_HEALTH_COLLECTION",),
    "log_level": ("LOG_LEVEL",),
}


@lru_cache()
def _load_toml() -> dict:
    if _ENV_PATH.exists():
        return toml.loads(_ENV_PATH.read_text())
    return {}


def _from_env(key: str) -> Optional[str]:
    direct = os.environ.get(key) or os.environ.get(key.upper())
    if direct:
        return str(direct)
    for env_name in ENV_MAP.get(key, ()):
        if os.environ.get(env_name):
            return str(os.environ[env_name])
    return None


def _from_toml(key: str, data: Optional[dict] = None) -> Optional[str]:
    data = data if data is not None else _load_toml()
    if key in data:
        return str(data[key])
    # sectioned form: [firestore] project = "..." for firestore_project
    if "_" in key:
        section, real_key = key.split("_", 1)
        if isinstance(data.get(section), dict) and real_key in data[section]:
            return str(data[section][real_key])
    return None


def _gcp_disabled() -> bool:
    return os.environ.get("DISABLE_GCP_SECRET_MANAGER", "").lower() in {"1", "true", "yes"}


def _project_id() -> Optional[str]:
    for name in _PROJECT_VARS:
        if os.environ.get(name):
            return os.environ[name]
    return None


def _from_secret_manager(key: str) -> Optional[str]:
    project = _project_id()
    if _gcp_disabled() or not project:
        return None
    try:
        client = secretmanager.SecretManagerServiceClient()
        name = f"projects/{project}/secrets/{key}/versions/latest"
        response = client.access_secret_version(name=name, timeout=2.0)
        return response.payload.data.decode("UTF-8")
    except Exception:  # noqa: BLE001 - absent secret means "not configured"
        return None


def get_setting(key: str, default: Optional[str] = None) -> Optional[str]:
    """Resolve ``key`` from env vars, then config/env.toml, then Secret Manager."""
    for lookup in (_from_env, _from_toml, _from_secret_manager):
        value = lookup(key)
        if value is not None:
            return value
    return default
