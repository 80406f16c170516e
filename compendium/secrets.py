from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from google.api_core.exceptions import GoogleAPIError
from google.cloud import secretmanager

logger = logging.getLogger(__name__)

_REPO_ROOT = Path(__file__).resolve().parents[1]
_SECRETS_DIR = _REPO_ROOT / "secrets"


def setup_secrets(env: str) -> dict[str, Path]:
    """
    Materialise env-provided secrets (ENV_FILE, SERVICE_ACCOUNT_KEY) under ./secrets.
    Returns the env var names mapped to the files that now hold them.
    """
    _SECRETS_DIR.mkdir(parents=True, exist_ok=True)

    secret_files_path: dict[str, Path] = {
        "ENV_FILE": _SECRETS_DIR / f"env.{env}",
        "SERVICE_ACCOUNT_KEY": _SECRETS_DIR / f"compendium-{env}-sa.json",
    }

    written: dict[str, Path] = {}
    for env_var, file_path in secret_files_path.items():
        value = os.environ.get(env_var)
        if not value:
            continue
        if file_path.exists():
            logger.info("Secret file %s already exists, skipping", file_path)
        else:
            file_path.write_text(value)
        written[env_var] = file_path
        if env_var == "SERVICE_ACCOUNT_KEY":
            os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = str(file_path)
    return written


@lru_cache(maxsize=1)
def _sm_client() -> secretmanager.SecretManagerServiceClient:
    return secretmanager.SecretManagerServiceClient()


def _resource_path(reference: str) -> str:
    # bare secret ids resolve against the deployment project, latest version
    if reference.startswith("projects/"):
        return reference
    project = os.getenv("GOOGLE_CLOUD_PROJECT")
    if not project:
        raise RuntimeError(f"Secret {reference!r} is not a full resource path and GOOGLE_CLOUD_PROJECT is unset")
    return f"projects/{project}/secrets/{reference}/versions/latest"


@lru_cache(maxsize=256)
def _sm_get(resource: str) -> str:
    try:
        resp = _sm_client().access_secret_version(name=resource)
    except GoogleAPIError as exc:
        logger.error("Secret Manager lookup failed for %s: %s", resource, exc)
        raise RuntimeError(f"Could not read secret {resource}") from exc
    return resp.payload.data.decode("utf-8")


def get_secret(name: str, default: Optional[str] = None) -> str:
    """
    Resolution order:
      1) NAME (env/.env)
      2) NAME_RESOURCE, either a full Secret Manager path or a secret id in GOOGLE_CLOUD_PROJECT
      3) default, else raise RuntimeError
    """
    if (v := os.getenv(name)) is not None:
        return v
    if (r := os.getenv(f"{name}_RESOURCE")):
        return _sm_get(_resource_path(r.strip()))
    if default is not None:
        return default
    raise RuntimeError(f"Missing {name} (or {name}_RESOURCE)")
