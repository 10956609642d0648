"""
Vault access for the billing engine's secrets.

The engine needs one secret today: the PostgreSQL URL under
``billing/database``. Reads go through AppRole and are cached per process
by secret path, so a restart picks up a rotated password.
"""

import os
import logging
from typing import Dict

import hvac
from hvac.exceptions import InvalidPath, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

SECRET_PREFIX = "billing"

_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, Dict[str, str]] = {}


class VaultClient:
    """AppRole-authenticated reader for KV v2 secrets under ``billing/``."""

    def __init__(self, vault_addr: str | None = None, vault_namespace: str | None = None):
        """
        Log in with AppRole credentials from the environment.

        Raises:
            ValueError: VAULT_ADDR, VAULT_ROLE_ID or VAULT_SECRET_ID missing
            PermissionError: Vault rejected the login
        """
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        role_id = os.getenv("VAULT_ROLE_ID")
        secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")
        if not role_id or not secret_id:
            raise ValueError("VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required")

        self.client = hvac.Client(url=self.vault_addr, **({"namespace": namespace} if namespace else {}))

        try:
            login = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
        except (Unauthorized, Forbidden, InvalidPath) as e:
            raise PermissionError(f"Vault AppRole authentication failed: {e}") from e
        self.client.token = login["auth"]["client_token"]

        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed after AppRole login")

        logger.info("Vault client authenticated against %s", self.vault_addr)

    def read_secret(self, path: str) -> Dict[str, str]:
        """
        All fields of ``billing/<path>``.

        Raises:
            PermissionError: The path does not exist or the role may not read it
        """
        full_path = f"{SECRET_PREFIX}/{path}"
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath as e:
            logger.error("Secret path not found: %s", full_path)
            raise PermissionError(f"Secret path '{full_path}' not found in Vault") from e
        except (Unauthorized, Forbidden) as e:
            logger.error("Access denied to secret %s", full_path)
            raise PermissionError(f"Access denied to secret '{full_path}': {e}") from e
        return response["data"]["data"]

    def get_secret(self, path: str, field: str) -> str:
        """
        One field of ``billing/<path>``.

        Raises:
            PermissionError: As for read_secret
            KeyError: The secret has no such field
        """
        secret = self.read_secret(path)
        if field not in secret:
            raise KeyError(
                f"Field '{field}' not found in secret '{SECRET_PREFIX}/{path}'. "
                f"Available: {', '.join(secret)}"
            )
        return secret[field]


def _vault() -> VaultClient:
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


def get_database_url() -> str:
    """PostgreSQL URL from ``billing/database``, read once per process."""
    if "database" not in _secret_cache:
        _secret_cache["database"] = _vault().read_secret("database")
    secret = _secret_cache["database"]
    if "url" not in secret:
        raise KeyError(f"Field 'url' not found in secret '{SECRET_PREFIX}/database'")
    return secret["url"]
