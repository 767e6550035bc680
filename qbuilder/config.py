"""Runtime configuration resolved from Streamlit secrets and the environment."""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, Optional

from qbuilder.local_backend import LocalBackend
from qbuilder.persistence import PersistenceService
from qbuilder.supabase_backend import SupabaseBackend

DEFAULT_LOCAL_STORE_PATH = Path("questionnaire_data/store.json")
DEFAULT_SCHEMA = "public"
DEFAULT_POLL_INTERVAL = 2.0
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_LOG_LEVEL = "INFO"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Attach a stream handler to the package logger once."""

    logger = logging.getLogger("qbuilder")
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level)


def get_log_level(secrets: Optional[Mapping] = None, environ: Optional[Mapping] = None) -> str:
    """Return the log level named by ``log_level`` in secrets or ``QBUILDER_LOG_LEVEL``."""

    secrets = secrets if secrets is not None else {}
    environ = environ if environ is not None else os.environ
    level = secrets.get("log_level") or environ.get("QBUILDER_LOG_LEVEL") or DEFAULT_LOG_LEVEL
    return str(level).upper()


def _secrets_dict(secrets: Mapping, name: str) -> Dict[str, Any]:
    """Return a mapping stored under ``name`` in ``secrets``."""

    value = secrets.get(name, {})
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def get_supabase_config(
    secrets: Optional[Mapping] = None,
    environ: Optional[Mapping] = None,
) -> Optional[Dict[str, Any]]:
    """Return Supabase connection settings if any source provides them."""

    secrets = secrets if secrets is not None else {}
    environ = environ if environ is not None else os.environ

    section = _secrets_dict(secrets, "supabase")
    url = section.get("url")
    anon_key = section.get("anon_key")
    schema = section.get("schema", DEFAULT_SCHEMA)
    poll_interval = section.get("poll_interval", DEFAULT_POLL_INTERVAL)

    if not (url and anon_key):
        url = secrets.get("supabase_url", url)
        anon_key = secrets.get("supabase_anon_key", anon_key)

    if not (url and anon_key):
        url = environ.get("SUPABASE_URL", url)
        anon_key = environ.get("SUPABASE_ANON_KEY", anon_key)

    if url and anon_key:
        return {
            "url": url,
            "anon_key": anon_key,
            "schema": schema,
            "poll_interval": float(poll_interval),
        }
    return None


def local_store_path(
    secrets: Optional[Mapping] = None,
    environ: Optional[Mapping] = None,
) -> Path:
    """Return the JSON file used when no remote database is configured."""

    secrets = secrets if secrets is not None else {}
    environ = environ if environ is not None else os.environ
    configured = environ.get("QBUILDER_LOCAL_STORE") or secrets.get("local_store_path")
    return Path(configured) if configured else DEFAULT_LOCAL_STORE_PATH


def get_backend(
    secrets: Optional[Mapping] = None,
    environ: Optional[Mapping] = None,
) -> PersistenceService:
    """Instantiate the remote back-end when configured, else the local one."""

    config = get_supabase_config(secrets, environ)
    if config is None:
        return LocalBackend(local_store_path(secrets, environ))

    return SupabaseBackend(
        url=config["url"],
        api_key=config["anon_key"],
        schema=config["schema"],
        poll_interval=config["poll_interval"],
    )


def verify_password(password: str, stored_hash: str) -> bool:
    """Validate a plaintext password against a sha256 hex digest."""

    if not stored_hash:
        return False
    digest = hashlib.sha256(password.encode("utf-8")).hexdigest()
    return hmac.compare_digest(digest, stored_hash)
