# event_backup/services/credentials_service.py
"""
Protect credentials from AWS Secrets Manager.

The secret is a JSON blob {hostname, username, password, apikey?}. Once
resolved it is cached for the life of the process; secrets do not rotate
mid-invocation and warm containers are recycled by the runtime.
"""

from typing import Optional

from botocore.exceptions import ClientError, EndpointConnectionError
from pydantic import ValidationError as PydanticValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from event_backup.schemas.credentials import UnifiCredentials
from event_backup.utils.errors import ConfigurationError, CredentialsError
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)


class CredentialsCache:
    """Holds at most one credential set; the first assignment wins."""

    def __init__(self):
        self._value: Optional[UnifiCredentials] = None

    def get(self) -> Optional[UnifiCredentials]:
        return self._value

    def set_if_absent(self, credentials: UnifiCredentials) -> UnifiCredentials:
        if self._value is None:
            self._value = credentials
        return self._value

    def clear(self):
        self._value = None


def normalize_hostname(hostname: str) -> str:
    hostname = hostname.strip().rstrip("/")
    if not hostname.startswith(("http://", "https://")):
        hostname = f"https://{hostname}"
    return hostname


class CredentialsService:
    def __init__(self, client, secret_arn: Optional[str], cache: Optional[CredentialsCache] = None):
        self.client = client
        self.secret_arn = secret_arn
        self.cache = cache or CredentialsCache()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type(EndpointConnectionError),
        reraise=True,
    )
    def _fetch_secret_string(self) -> str:
        response = self.client.get_secret_value(SecretId=self.secret_arn)
        return response["SecretString"]

    def get_credentials(self) -> UnifiCredentials:
        cached = self.cache.get()
        if cached is not None:
            return cached

        if not self.secret_arn:
            raise ConfigurationError("UnifiCredentialsSecretArn environment variable is not set")

        try:
            secret = self._fetch_secret_string()
            credentials = UnifiCredentials.model_validate_json(secret)
        except (ClientError, EndpointConnectionError) as e:
            logger.error(f"[CREDENTIALS] Error retrieving Unifi credentials from Secrets Manager: {e}")
            raise CredentialsError(f"Unable to read secret: {e}") from e
        except PydanticValidationError as e:
            logger.error(f"[CREDENTIALS] Secret is not a valid credentials document: {e}")
            raise CredentialsError("Failed to deserialize Unifi credentials from Secrets Manager") from e

        for field in ("hostname", "username", "password"):
            if not getattr(credentials, field).strip():
                logger.error(f"[CREDENTIALS] {field} is missing from the secret")
                raise CredentialsError(f"{field.capitalize()} is required in Unifi credentials")

        credentials.hostname = normalize_hostname(credentials.hostname)
        logger.info(f"[CREDENTIALS] Resolved credentials for {credentials.hostname}")
        return self.cache.set_if_absent(credentials)
