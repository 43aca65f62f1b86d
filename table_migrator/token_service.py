"""
Token Service Module
Keeps the OAuth credentials for the Snowflake REST API encrypted in memory
and refreshes the access token on demand or on a schedule.
"""

import base64
import hashlib
import threading
from typing import Dict, Optional

import requests
from cryptography.fernet import Fernet, InvalidToken
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from table_migrator.config_manager import ConfigManager
from table_migrator.errors import EncryptionError, RequestValidationError, TokenRefreshError
from table_migrator.utils.logger import get_logger

logger = get_logger(__name__)

TOKEN_ENDPOINT = '/oauth/token-request'

ACCESS_TOKEN = 'access_token'
REFRESH_TOKEN = 'refresh_token'
CLIENT_ID = 'client_id'
CLIENT_SECRET = 'client_secret'

_CREDENTIAL_ALIASES = {
    'accessToken': ACCESS_TOKEN,
    'refreshToken': REFRESH_TOKEN,
    'clientId': CLIENT_ID,
    'clientSecret': CLIENT_SECRET,
}


class OAuthCredentials:
    """In-memory map of Fernet-encrypted OAuth values."""

    def __init__(self, encryption_key: Optional[str] = None):
        """
        Args:
            encryption_key: Passphrase the Fernet key is derived from. When
                omitted a random key is generated, valid for this process only.
        """
        if encryption_key:
            key = base64.urlsafe_b64encode(hashlib.sha256(encryption_key.encode()).digest())
        else:
            logger.warning("No encryption key configured, using a per-process key for OAuth values")
            key = Fernet.generate_key()
        self._fernet = Fernet(key)
        self._values: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def save(self, values: Dict[str, str]) -> None:
        """Encrypt and store the given values, keyed by their normalized names."""
        with self._lock:
            for key, value in values.items():
                if value is None or value == '':
                    continue
                name = _CREDENTIAL_ALIASES.get(key, key)
                self._values[name] = self._fernet.encrypt(str(value).encode())

    def get(self, key: str) -> Optional[str]:
        """Decrypt and return a stored value, or None."""
        with self._lock:
            token = self._values.get(key)
        if token is None:
            return None
        try:
            return self._fernet.decrypt(token).decode()
        except InvalidToken:
            logger.error(f"Stored OAuth value '{key}' could not be decrypted")
            return None

    def encrypt_value(self, value: str) -> str:
        """Encrypt a value for the caller without storing it."""
        if value is None or str(value) == '':
            raise EncryptionError("Error: Encrypting the values, Received value for encryption is blank")
        return self._fernet.encrypt(str(value).encode()).decode()

    def clear(self, key: str = None) -> None:
        with self._lock:
            if key is None:
                self._values.clear()
            else:
                self._values.pop(key, None)

    def has_refresh_credentials(self) -> bool:
        return all(self.get(name) for name in (REFRESH_TOKEN, CLIENT_ID, CLIENT_SECRET))


class TokenRefreshService:
    """
    Exchanges the stored refresh token for an access token.

    Concurrent callers that find no cached token share a single refresh.
    """

    def __init__(
        self,
        credentials: OAuthCredentials = None,
        snowflake_config: Dict = None,
        oauth_config: Dict = None,
        session: requests.Session = None
    ):
        config = None
        if snowflake_config is None or oauth_config is None:
            config = ConfigManager()
        if snowflake_config is None:
            snowflake_config = config.get_snowflake_config()
        if oauth_config is None:
            oauth_config = config.get_oauth_config()

        if credentials is None:
            security_config = (config or ConfigManager()).get_security_config()
            credentials = OAuthCredentials(security_config.get('encryption_key'))

        self.credentials = credentials
        self.account_url = snowflake_config.get('account_url', '').rstrip('/')
        self.timeout = oauth_config.get('request_timeout', 30)
        self.max_retries = oauth_config.get('max_retries', 3)
        self.retry_delay = oauth_config.get('retry_delay', 1)
        self._session = session or self._create_session()
        self._refresh_lock = threading.Lock()

        # Seed credentials from configuration when present
        seed = {
            REFRESH_TOKEN: oauth_config.get('refresh_token'),
            CLIENT_ID: oauth_config.get('client_id'),
            CLIENT_SECRET: oauth_config.get('client_secret'),
        }
        if any(seed.values()):
            self.credentials.save(seed)

    def _create_session(self) -> requests.Session:
        """Create requests session with retry logic."""
        session = requests.Session()
        session.headers.update({'Accept': 'application/json'})

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=self.retry_delay,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=['POST']
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount('https://', adapter)
        session.mount('http://', adapter)

        return session

    def save_credentials(self, values: Dict[str, str]) -> None:
        """Store new OAuth values and drop the cached access token when the refresh token changes."""
        if not isinstance(values, dict) or not values:
            raise RequestValidationError("OAuth values must be a non-empty mapping")
        normalized = {_CREDENTIAL_ALIASES.get(k, k): v for k, v in values.items()}
        if REFRESH_TOKEN in normalized and ACCESS_TOKEN not in normalized:
            self.credentials.clear(ACCESS_TOKEN)
        self.credentials.save(normalized)
        logger.info(f"Saved {len(normalized)} OAuth value(s)")

    def encrypt_values(self, values: Dict[str, str]) -> Dict[str, str]:
        """
        Encrypt every value of a mapping with the credential key.

        Raises:
            RequestValidationError: If values is not a non-empty mapping
            EncryptionError: If a value is blank
        """
        if not isinstance(values, dict) or not values:
            raise RequestValidationError("Values to encrypt must be a non-empty mapping")
        encrypted = {key: self.credentials.encrypt_value(value) for key, value in values.items()}
        logger.info(f"Encrypted {len(encrypted)} value(s)")
        return encrypted

    def get_access_token(self) -> str:
        """
        Return the cached access token, refreshing it when absent.

        Raises:
            TokenRefreshError: If no token can be obtained
        """
        token = self.credentials.get(ACCESS_TOKEN)
        if token:
            return token

        with self._refresh_lock:
            # Another caller may have refreshed while we waited
            token = self.credentials.get(ACCESS_TOKEN)
            if token:
                return token
            self.refresh_token()
            token = self.credentials.get(ACCESS_TOKEN)

        if not token:
            raise TokenRefreshError("Error: No access token available, OAuth values are not set")
        return token

    def invalidate(self) -> None:
        """Forget the cached access token."""
        self.credentials.clear(ACCESS_TOKEN)

    def refresh_token(self) -> Optional[Dict]:
        """
        Request a new access token with the stored refresh token.

        Returns:
            Token response body, or None when OAuth values are not set yet

        Raises:
            TokenRefreshError: If the token endpoint call fails
        """
        if not self.credentials.has_refresh_credentials():
            logger.info("OAuth values are not set yet, set them before running REST API commands")
            return None

        form = {
            'grant_type': 'refresh_token',
            'refresh_token': self.credentials.get(REFRESH_TOKEN),
            'client_id': self.credentials.get(CLIENT_ID),
            'client_secret': self.credentials.get(CLIENT_SECRET),
        }

        try:
            response = self._session.post(
                self.account_url + TOKEN_ENDPOINT,
                data=form,
                timeout=self.timeout
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            logger.error(f"Error while refreshing the token: {e}")
            raise TokenRefreshError(f"Error: Unable to refresh token: {e}") from e
        except ValueError as e:
            logger.error(f"Token endpoint returned a non-JSON body: {e}")
            raise TokenRefreshError("Error: Token endpoint returned an invalid response") from e

        access_token = body.get(ACCESS_TOKEN) if isinstance(body, dict) else None
        if not access_token:
            raise TokenRefreshError("Error: Token endpoint response has no access token")

        self.credentials.save({ACCESS_TOKEN: access_token})
        logger.info("Access token refreshed")
        return body


_token_service: TokenRefreshService = None


def get_token_service() -> TokenRefreshService:
    """Get the shared token service, creating it on first use."""
    global _token_service
    if _token_service is None:
        _token_service = TokenRefreshService()
    return _token_service
