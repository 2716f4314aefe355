"""
HashiCorp Vault client for ledger secrets.

Authenticates with AppRole, or with a plain token when VAULT_TOKEN is set
(local development). Every path is scoped under 'ledger/'. DATABASE_URL in
the environment short-circuits Vault entirely for local runs and tests.
"""

import os
import logging
from typing import Dict

import hvac
from hvac.exceptions import InvalidPath, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

# Project scope - all secrets under this path
_SECRET_PREFIX = "ledger"

_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, Dict[str, str]] = {}


def _ensure_vault_client() -> "VaultClient":
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


class VaultError(Exception):
    """Secret unavailable: path missing, access denied, or field absent."""


class VaultClient:
    """KV v2 reader scoped to the ledger's secret prefix."""

    def __init__(
        self,
        vault_addr: str | None = None,
        vault_namespace: str | None = None,
        mount_point: str = "secret",
    ):
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        self.mount_point = mount_point

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")

        client_kwargs = {"url": self.vault_addr}
        if self.vault_namespace:
            client_kwargs["namespace"] = self.vault_namespace
        self.client = hvac.Client(**client_kwargs)

        token = os.getenv("VAULT_TOKEN")
        if token:
            self.client.token = token
        else:
            self._login_approle(os.getenv("VAULT_ROLE_ID"), os.getenv("VAULT_SECRET_ID"))

        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed")

        logger.info(f"Vault client ready: {self.vault_addr} (mount '{self.mount_point}')")

    def _login_approle(self, role_id: str | None, secret_id: str | None) -> None:
        if not role_id or not secret_id:
            raise ValueError(
                "Set VAULT_TOKEN, or both VAULT_ROLE_ID and VAULT_SECRET_ID"
            )
        try:
            response = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
        except (Unauthorized, Forbidden) as e:
            logger.error(f"AppRole login rejected: {e}")
            raise PermissionError(f"AppRole login rejected: {e}") from e
        self.client.token = response["auth"]["client_token"]

    def read_secret(self, path: str) -> Dict[str, str]:
        """
        Read every field of a secret under 'ledger/'.

        Raises:
            VaultError: Path missing or not readable with this token
        """
        full_path = f"{_SECRET_PREFIX}/{path}"
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path,
                mount_point=self.mount_point,
                raise_on_deleted_version=True,
            )
        except InvalidPath as e:
            raise VaultError(f"Secret '{full_path}' not found") from e
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise VaultError(f"Access denied to secret '{full_path}'") from e

        return response["data"]["data"]

    def get_secret(self, path: str, field: str) -> str:
        """One field of a secret under 'ledger/'."""
        data = self.read_secret(path)
        if field not in data:
            raise VaultError(
                f"Field '{field}' not found in secret '{_SECRET_PREFIX}/{path}'. "
                f"Available: {', '.join(sorted(data))}"
            )
        return data[field]


def _cached_secret(path: str) -> Dict[str, str]:
    if path not in _secret_cache:
        _secret_cache[path] = _ensure_vault_client().read_secret(path)
    return _secret_cache[path]


def get_database_url() -> str:
    """PostgreSQL URL: DATABASE_URL if set, else ledger/database:url from Vault."""
    env_url = os.getenv("DATABASE_URL")
    if env_url:
        return env_url

    secret = _cached_secret("database")
    if "url" not in secret:
        raise VaultError("Field 'url' not found in secret 'ledger/database'")
    return secret["url"]


def get_ledger_settings() -> Dict[str, str]:
    """
    Optional ledger overrides from ledger/settings.

    An absent secret means "use defaults" and yields an empty dict.
    """
    try:
        return dict(_cached_secret("settings"))
    except VaultError:
        logger.debug("No ledger/settings secret, using defaults")
        return {}


def clear_secret_cache() -> None:
    """Forget cached secrets, e.g. after rotation."""
    _secret_cache.clear()
