"""
Configuration loader for the action dispatch engine

Reads runtime knobs from the environment and fetches per-tenant chat gateway
credentials from AWS Secrets Manager with caching and exponential backoff.
"""

import json
import logging
import os
import time
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Exception raised for configuration-related errors."""

    pass


# Secret NAME prefix, not a secret value. One secret per tenant.
GATEWAY_SECRET_PREFIX = "action-dispatch/gateway"  # nosec B105

DEFAULT_REGION = "sa-east-1"
DEFAULT_ACTIONS_TABLE = "actions"
DEFAULT_DELIVERY_LOG_TABLE = "action_delivery_logs"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() == "true"


def _env_number(name: str, default: float, cast=float, minimum: float = 0) -> Any:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return cast(default)
    try:
        value = cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


class Settings:
    """
    Runtime configuration for publishers, the dispatcher and the stores.

    Values are read once per instance so tests can tweak the environment and
    build a fresh Settings.
    """

    def __init__(self, region_name: Optional[str] = None):
        """
        Initialize Settings from environment variables.

        Args:
            region_name: AWS region override (defaults to AWS_REGION or sa-east-1)

        Raises:
            ConfigurationError: If a numeric variable is malformed or out of range
        """
        self.region_name = region_name or os.getenv("AWS_REGION", DEFAULT_REGION)
        self.actions_table_name = os.getenv("ACTIONS_TABLE_NAME", DEFAULT_ACTIONS_TABLE)
        self.delivery_log_table_name = os.getenv(
            "DELIVERY_LOG_TABLE_NAME", DEFAULT_DELIVERY_LOG_TABLE
        )
        self.delivery_log_enabled = _env_bool("DELIVERY_LOG_ENABLED", True)

        self.http_timeout_seconds = _env_number(
            "ACTIONS_HTTP_TIMEOUT_SECONDS", 15.0, minimum=0.1
        )
        self.max_workers = _env_number("ACTIONS_MAX_WORKERS", 8, cast=int, minimum=1)
        self.test_deadline_seconds = _env_number(
            "ACTIONS_TEST_DEADLINE_SECONDS", 20.0, minimum=0.1
        )
        # 1 attempt means at-most-once delivery; raise it to opt into retries.
        self.webhook_max_attempts = _env_number(
            "ACTIONS_WEBHOOK_MAX_ATTEMPTS", 1, cast=int, minimum=1
        )
        self.retry_backoff_seconds = _env_number("ACTIONS_RETRY_BACKOFF_SECONDS", 0.5)

        self.use_local_secrets = _env_bool("USE_LOCAL_SECRETS_FILE", False)
        self.local_secrets_file = os.getenv("LOCAL_SECRETS_FILE_PATH", ".local/secrets.json")

        self.secrets_client = None
        self._gateway_cache: Dict[str, Dict[str, str]] = {}

    def is_delivery_log_enabled(self) -> bool:
        """Check if delivery outcomes should be persisted."""
        return self.delivery_log_enabled

    def _get_secrets_client(self):
        """Lazy initialize Secrets Manager client."""
        if self.secrets_client is None:
            self.secrets_client = boto3.client("secretsmanager", region_name=self.region_name)
        return self.secrets_client

    def _get_secret_value(
        self, secret_id: str, max_retries: int = 3, base_wait: float = 1.0
    ) -> Dict[str, Any]:
        """
        Fetch secret from Secrets Manager with exponential backoff.

        Args:
            secret_id: Secret identifier in Secrets Manager
            max_retries: Maximum number of retry attempts
            base_wait: Base wait time in seconds for exponential backoff

        Returns:
            Parsed secret JSON as dictionary

        Raises:
            RuntimeError: If secret cannot be retrieved after retries
        """
        client = self._get_secrets_client()

        for attempt in range(max_retries):
            try:
                response = client.get_secret_value(SecretId=secret_id)
                secret_string = response.get("SecretString")
                if not secret_string:
                    raise RuntimeError(f"Secret {secret_id} has empty value")
                return json.loads(secret_string)
            except ClientError as e:
                error_code = e.response["Error"]["Code"]
                if error_code == "ResourceNotFoundException":
                    raise RuntimeError(
                        f"Secret '{secret_id}' not found in Secrets Manager "
                        f"(region {self.region_name})"
                    ) from e
                if error_code in ("AccessDeniedException", "UnauthorizedOperation"):
                    raise RuntimeError(
                        f"Access denied to secret '{secret_id}'. "
                        f"Verify the role has secretsmanager:GetSecretValue permission"
                    ) from e
                if error_code == "DecryptionFailure":
                    raise RuntimeError(f"Failed to decrypt secret '{secret_id}'") from e

                if attempt < max_retries - 1:
                    wait_time = base_wait * (2**attempt)
                    logger.warning(
                        f"Transient error fetching secret {secret_id}: {error_code}. "
                        f"Retrying in {wait_time}s (attempt {attempt + 1}/{max_retries})"
                    )
                    time.sleep(wait_time)
                else:
                    raise RuntimeError(
                        f"Failed to retrieve secret '{secret_id}' after {max_retries} "
                        f"attempts: {error_code}"
                    ) from e
            except NoCredentialsError as e:
                raise RuntimeError(f"No AWS credentials to read secret '{secret_id}'") from e
            except BotoCoreError as e:
                # Endpoint unreachable, read timeout and other transport errors
                if attempt < max_retries - 1:
                    wait_time = base_wait * (2**attempt)
                    logger.warning(
                        f"Transport error fetching secret {secret_id}: {e}. "
                        f"Retrying in {wait_time}s (attempt {attempt + 1}/{max_retries})"
                    )
                    time.sleep(wait_time)
                else:
                    raise RuntimeError(
                        f"Failed to reach Secrets Manager for '{secret_id}' after "
                        f"{max_retries} attempts: {e}"
                    ) from e
            except json.JSONDecodeError as e:
                raise RuntimeError(f"Secret '{secret_id}' contains invalid JSON: {e}") from e

        raise RuntimeError(f"Failed to retrieve secret '{secret_id}' - exhausted all retries")

    def load_gateway_credentials(self, tenant_id: str) -> Dict[str, str]:
        """
        Load chat gateway credentials for one tenant.

        Returns:
            Dictionary with 'api_url', 'api_key' and 'instance_name' keys

        Raises:
            RuntimeError: If credentials cannot be loaded or are incomplete
        """
        cached = self._gateway_cache.get(tenant_id)
        if cached:
            return cached

        if self.use_local_secrets:
            credentials = (
                self._load_from_local_file(self.local_secrets_file)
                .get("gateway", {})
                .get(tenant_id, {})
            )
        else:
            credentials = self._get_secret_value(f"{GATEWAY_SECRET_PREFIX}/{tenant_id}")

        required_keys = {"api_url", "api_key", "instance_name"}
        if not required_keys.issubset(credentials.keys()):
            raise RuntimeError(
                f"Gateway credentials for tenant '{tenant_id}' missing required keys. "
                f"Expected: {sorted(required_keys)}. Got: {sorted(credentials.keys())}"
            )

        self._gateway_cache[tenant_id] = credentials
        return credentials

    @staticmethod
    def _load_from_local_file(filepath: str) -> Dict[str, Any]:
        """
        Load secrets from local JSON file for development.

        Raises:
            RuntimeError: If file cannot be read or contains invalid JSON
        """
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            raise RuntimeError(
                f"Local secrets file not found: {filepath}. "
                f"Use AWS Secrets Manager or set LOCAL_SECRETS_FILE_PATH"
            )
        except json.JSONDecodeError as e:
            raise RuntimeError(f"Local secrets file contains invalid JSON: {str(e)}")
