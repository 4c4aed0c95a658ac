"""Microsoft Graph authentication using the MSAL device code flow.

The MSAL token cache is persisted in the OS keychain via ``keyring``.  When
no keychain backend is usable (headless Linux, containers) it falls back to
``~/.ms365-mcp/token_cache.json``, readable only by the owner.

An access token issued elsewhere can be injected instead (``MS365_MCP_OAUTH_TOKEN``
or the HTTP transport's bearer token); while one is set, MSAL is bypassed.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Callable, Iterable
from typing import Any

import httpx
import keyring
import msal
from keyring.errors import KeyringError

from ms365_mcp.config import CONFIG_DIR, Settings

logger = logging.getLogger(__name__)

SERVICE_NAME = "ms365-mcp"
TOKEN_CACHE_ACCOUNT = "msal-token-cache"
CACHE_DIR = CONFIG_DIR
CACHE_FILE = CACHE_DIR / "token_cache.json"

GRAPH_ME_URL = "https://graph.microsoft.com/v1.0/me"

# Refresh a little before the real expiry so a token doesn't lapse mid-request.
_EXPIRY_MARGIN_SECONDS = 60


class AuthError(Exception):
    """Raised when no valid Graph session exists or sign-in fails."""


def _print_to_stderr(text: str) -> None:
    print(text, file=sys.stderr)


def _load_cache_data() -> str | None:
    """Read the serialized token cache from the keychain, then the fallback file."""
    try:
        data = keyring.get_password(SERVICE_NAME, TOKEN_CACHE_ACCOUNT)
    except KeyringError as exc:
        logger.warning("Keychain access failed, falling back to file storage: %s", exc)
        data = None
    if data:
        return data
    if CACHE_FILE.exists():
        return CACHE_FILE.read_text()
    return None


def _write_cache_file(data: str) -> None:
    CACHE_DIR.mkdir(parents=True, exist_ok=True)
    CACHE_FILE.write_text(data)
    # Restrict to owner-only read/write since this contains auth tokens.
    CACHE_FILE.chmod(0o600)


def _build_cache() -> msal.SerializableTokenCache:
    """Load the persistent token cache."""
    cache = msal.SerializableTokenCache()
    data = _load_cache_data()
    if data:
        try:
            cache.deserialize(data)
        except (ValueError, KeyError):
            logger.warning("Stored token cache is corrupt, starting fresh")
            return msal.SerializableTokenCache()
    return cache


def _save_cache(cache: msal.SerializableTokenCache) -> None:
    """Persist the token cache if anything changed."""
    if not cache.has_state_changed:
        return
    data = cache.serialize()
    try:
        keyring.set_password(SERVICE_NAME, TOKEN_CACHE_ACCOUNT, data)
    except KeyringError as exc:
        logger.warning("Keychain save failed, falling back to file storage: %s", exc)
        _write_cache_file(data)


def _clear_stored_cache() -> None:
    try:
        keyring.delete_password(SERVICE_NAME, TOKEN_CACHE_ACCOUNT)
    except KeyringError as exc:
        # PasswordDeleteError (nothing stored) is a KeyringError too.
        logger.debug("Keychain deletion skipped: %s", exc)
    if CACHE_FILE.exists():
        CACHE_FILE.unlink()


class AuthManager:
    """Supplies bearer tokens for Graph requests.

    MSAL calls are blocking; async callers should run them in a thread.
    """

    def __init__(self, settings: Settings, scopes: Iterable[str]) -> None:
        self.settings = settings
        self.scopes = sorted(scopes)
        self._cache: msal.SerializableTokenCache | None = None
        self._app: msal.PublicClientApplication | None = None
        self._access_token: str | None = None
        self._token_expiry: float | None = None
        self._oauth_token = settings.oauth_token
        logger.info("Requesting scopes: %s", ", ".join(self.scopes))

    @property
    def is_oauth_mode(self) -> bool:
        return self._oauth_token is not None

    @property
    def app(self) -> msal.PublicClientApplication:
        # Built lazily: constructing the MSAL app fetches authority metadata.
        if self._app is None:
            self._cache = _build_cache()
            self._app = msal.PublicClientApplication(
                self.settings.client_id,
                authority=self.settings.authority,
                token_cache=self._cache,
            )
        return self._app

    def _save(self) -> None:
        if self._cache is not None:
            _save_cache(self._cache)

    def _remember(self, result: dict[str, Any]) -> str:
        token = str(result["access_token"])
        expires_in = result.get("expires_in")
        self._access_token = token
        self._token_expiry = time.time() + int(expires_in) if expires_in else None
        self._save()
        return token

    def set_oauth_token(self, token: str) -> None:
        """Use a pre-issued access token for all subsequent requests."""
        self._oauth_token = token

    def get_token(self, force_refresh: bool = False) -> str:
        """Return a valid access token.

        Raises:
            AuthError: If there is no signed-in account or the cached
                refresh token can no longer be redeemed.
        """
        if self._oauth_token:
            return self._oauth_token

        if (
            not force_refresh
            and self._access_token
            and self._token_expiry is not None
            and self._token_expiry - _EXPIRY_MARGIN_SECONDS > time.time()
        ):
            return self._access_token

        accounts = self.app.get_accounts()
        if not accounts:
            raise AuthError("No valid token found. Sign in with the login tool or --login.")

        result = self.app.acquire_token_silent(
            self.scopes, account=accounts[0], force_refresh=force_refresh
        )
        if result and "access_token" in result:
            logger.debug("Token acquired silently for %s", accounts[0].get("username"))
            return self._remember(result)

        logger.error("Silent token acquisition failed")
        raise AuthError("Silent token acquisition failed. Sign in again.")

    def start_device_flow(self, scopes: list[str] | None = None) -> dict[str, Any]:
        """Begin a device code sign-in and return the MSAL flow object."""
        logger.info("Requesting device code...")
        flow = self.app.initiate_device_flow(scopes=scopes or self.scopes)
        if "user_code" not in flow:
            error_desc = flow.get("error_description", "Unknown error")
            logger.error("Device-code flow failed: %s", error_desc)
            raise AuthError(f"Could not start device-code flow: {error_desc}")
        return flow

    def complete_device_flow(self, flow: dict[str, Any]) -> str:
        """Block until the user completes the device code sign-in."""
        result = self.app.acquire_token_by_device_flow(flow)
        if "access_token" in result:
            logger.info("Device code login successful")
            return self._remember(result)

        error_desc = result.get("error_description", "Unknown error")
        logger.error("Authentication failed: %s", error_desc)
        raise AuthError(f"Authentication failed: {error_desc}")

    def acquire_token_by_device_code(
        self, callback: Callable[[str], None] | None = None
    ) -> str:
        """Run the whole device code flow, showing the sign-in message via *callback*."""
        flow = self.start_device_flow()
        (callback or _print_to_stderr)(f"\n{flow['message']}\n")
        return self.complete_device_flow(flow)

    def test_login(self) -> dict[str, Any]:
        """Check that a token can be obtained and that Graph accepts it."""
        logger.info("Testing login...")
        try:
            token = self.get_token()
        except AuthError as exc:
            logger.error("Login test failed: %s", exc)
            return {"success": False, "message": f"Login failed: {exc}"}

        try:
            resp = httpx.get(GRAPH_ME_URL, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as exc:
            logger.error("Error fetching user data: %s", exc)
            return {
                "success": False,
                "message": f"Login successful but Graph API access failed: {exc}",
            }

        if resp.is_error:
            logger.error("Graph API user data fetch failed: %d - %s", resp.status_code, resp.text)
            return {
                "success": False,
                "message": f"Login successful but Graph API access failed: {resp.status_code}",
            }

        user = resp.json()
        return {
            "success": True,
            "message": "Login successful",
            "userData": {
                "displayName": user.get("displayName"),
                "userPrincipalName": user.get("userPrincipalName"),
            },
        }

    def logout(self) -> bool:
        """Forget every cached account and delete the persisted cache."""
        for account in self.app.get_accounts():
            self.app.remove_account(account)
        self._access_token = None
        self._token_expiry = None
        _clear_stored_cache()
        return True

    def has_work_account_permissions(self, work_scopes: list[str]) -> bool:
        """Return True if the cached account already consented to work-account scopes."""
        if not work_scopes:
            return False
        accounts = self.app.get_accounts()
        if not accounts:
            return False
        result = self.app.acquire_token_silent(work_scopes[:1], account=accounts[0])
        return bool(result and "access_token" in result)

    def expand_to_work_account_scopes(
        self,
        all_scopes: Iterable[str],
        callback: Callable[[str], None] | None = None,
    ) -> bool:
        """Re-consent with the work-account scopes included."""
        scopes = sorted(all_scopes)
        logger.info("Expanding to work account scopes...")
        try:
            flow = self.start_device_flow(scopes)
            (callback or _print_to_stderr)(
                "\nThis feature requires additional permissions (work account scopes)\n"
                f"{flow['message']}\n"
            )
            self.complete_device_flow(flow)
        except AuthError as exc:
            logger.error("Error expanding to work account scopes: %s", exc)
            return False
        self.scopes = scopes
        return True
