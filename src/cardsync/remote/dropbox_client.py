"""
Low-level Dropbox HTTP API client.

Maps HTTP outcomes onto the cardsync error taxonomy:
- 401 or an expired/invalid token summary -> Unauthenticated
- 409 whose summary mentions 'conflict' -> RevisionConflict
- 409 otherwise (e.g. path/not_found) -> DropboxApiError with the summary
- 429 -> NetworkError (rate limited; the request was not applied)
- 5xx -> ServerUnavailable
- connection errors and timeouts -> NetworkError
"""

import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

import requests

from ..core.exceptions import (
    NetworkError, RemoteStoreError, RevisionConflict, ServerUnavailable, Unauthenticated,
)


logger = logging.getLogger(__name__)

API_URL = "https://api.dropboxapi.com/2"
CONTENT_URL = "https://content.dropboxapi.com/2"


class DropboxApiError(RemoteStoreError):
    """A Dropbox endpoint error that is not part of the sync taxonomy."""

    @property
    def is_not_found(self) -> bool:
        return bool(self.summary) and "not_found" in self.summary


class DropboxClient:
    """
    Thin Dropbox API v2 client over a requests Session.

    Supports:
    - RPC endpoints (JSON in, JSON out)
    - Content download and upload endpoints
    - Bounded retries with exponential backoff for idempotent reads
    """

    def __init__(
        self,
        access_token: str,
        timeout: float = 30.0,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        user_agent: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            access_token: OAuth2 bearer token
            timeout: Request timeout in seconds
            max_retries: Attempts for idempotent reads (writes are tried once)
            backoff_seconds: Base delay for exponential backoff between reads
            user_agent: Custom User-Agent header
            session: Optional preconfigured session
        """
        if not access_token:
            raise Unauthenticated("No Dropbox access token configured")

        self.access_token = access_token
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self.user_agent = user_agent or "cardsync/0.1"
        self.session = session or requests.Session()

    def rpc(self, endpoint: str, payload: Any = None, idempotent: bool = True) -> Dict[str, Any]:
        """
        Call an RPC endpoint.

        Args:
            endpoint: Endpoint path, e.g. 'files/get_metadata'
            payload: JSON-serializable argument (None sends JSON null)
            idempotent: Whether the call may be retried

        Returns:
            Parsed JSON response
        """
        headers = self._headers({
            "Content-Type": "application/json",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        })
        response = self._send(
            f"{API_URL}/{endpoint}",
            headers=headers,
            data=json.dumps(payload),
            idempotent=idempotent,
        )
        return _json_or_empty(response)

    def content_download(self, endpoint: str, arg: Dict[str, Any]) -> Tuple[Dict[str, Any], bytes]:
        """
        Call a content-download endpoint.

        Returns:
            (result metadata, raw content)
        """
        headers = self._headers({
            "Dropbox-API-Arg": json.dumps(arg),
            "Cache-Control": "no-cache",
        })
        response = self._send(f"{CONTENT_URL}/{endpoint}", headers=headers, idempotent=True)

        result_header = response.headers.get("Dropbox-API-Result")
        try:
            metadata = json.loads(result_header) if result_header else {}
        except json.JSONDecodeError:
            metadata = {}
        return metadata, response.content

    def content_upload(self, endpoint: str, arg: Dict[str, Any], data: bytes) -> Dict[str, Any]:
        """
        Call a content-upload endpoint. Never retried.
        """
        headers = self._headers({
            "Dropbox-API-Arg": json.dumps(arg),
            "Content-Type": "application/octet-stream",
        })
        response = self._send(
            f"{CONTENT_URL}/{endpoint}", headers=headers, data=data, idempotent=False
        )
        return _json_or_empty(response)

    def get_account_name(self) -> Optional[str]:
        """Display name of the connected account (also validates the token)."""
        account = self.rpc("users/get_current_account", None)
        return (account.get("name") or {}).get("display_name")

    def close(self) -> None:
        """Close the session."""
        if self.session:
            self.session.close()

    # --- Internals ---

    def _headers(self, extra: Dict[str, str]) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "User-Agent": self.user_agent,
        }
        headers.update(extra)
        return headers

    def _send(
        self,
        url: str,
        headers: Dict[str, str],
        data: Any = None,
        idempotent: bool = True,
    ) -> requests.Response:
        attempts = self.max_retries if idempotent else 1
        last_error: Optional[RemoteStoreError] = None

        for attempt in range(attempts):
            try:
                response = self.session.post(url, headers=headers, data=data, timeout=self.timeout)
                _raise_for_response(response)
                return response
            except requests.exceptions.Timeout as e:
                last_error = NetworkError(f"Request timed out: {e}")
            except requests.exceptions.RequestException as e:
                last_error = NetworkError(f"Request failed: {e}")
            except (NetworkError, ServerUnavailable) as e:
                last_error = e

            logger.warning(
                f"Dropbox request failed (attempt {attempt + 1}/{attempts}): {last_error}"
            )
            if attempt < attempts - 1:
                time.sleep(self.backoff_seconds * (2 ** attempt))

        raise last_error


def _raise_for_response(response: requests.Response) -> None:
    status = response.status_code
    if status < 400:
        return

    summary = _error_summary(response)

    if status == 401 or "expired_access_token" in summary or "invalid_access_token" in summary:
        raise Unauthenticated(f"Dropbox rejected the access token: {summary or status}",
                              status_code=status, summary=summary)

    if status == 409:
        if "conflict" in summary:
            raise RevisionConflict(f"Dropbox reported a conflict: {summary}",
                                   status_code=status, summary=summary)
        raise DropboxApiError(f"Dropbox endpoint error: {summary}",
                              status_code=status, summary=summary)

    if status == 429:
        raise NetworkError("Dropbox rate limit reached", status_code=status, summary=summary)

    if status >= 500:
        raise ServerUnavailable(f"Dropbox server error {status}",
                                status_code=status, summary=summary)

    raise DropboxApiError(f"Dropbox request failed with {status}: {summary}",
                          status_code=status, summary=summary)


def _error_summary(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or "")[:200]
    if isinstance(body, dict):
        return str(body.get("error_summary") or "")
    return ""


def _json_or_empty(response: requests.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
