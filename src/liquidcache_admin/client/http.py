"""HTTP client for the LiquidCache admin API.

Talks to the cache service over a pooled requests session. Every call is
bounded by a timeout and performs exactly one attempt: retry policy lives in
the poll scheduler, which knows whether a retry is still wanted.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Optional, Union

import certifi
import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import (
    Ack,
    AdminCommand,
    BaseTransport,
    TransportNetworkError,
    TransportProtocolError,
    TransportTimeout,
)

DEFAULT_BASE_URL = "http://localhost:53703"
DEFAULT_TIMEOUT = 10.0
USER_AGENT = "liquidcache-admin/0.1"


def normalize_base_url(address: str) -> str:
    """Return a service address with a scheme and without a trailing slash."""
    address = (address or "").strip()
    if not address:
        return DEFAULT_BASE_URL
    if "://" not in address:
        address = f"http://{address}"
    return address.rstrip("/")


class CacheServiceClient(BaseTransport):
    """Transport to a LiquidCache service over HTTP."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        verify: bool = True,
        ca_bundle: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = normalize_base_url(base_url)
        self.timeout = timeout
        self._verify = self._determine_verify(verify, ca_bundle)
        self._session = session
        self._session_lock = threading.Lock()

        if self._verify is False:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def _determine_verify(self, verify: bool, ca_bundle: Optional[str]) -> Union[bool, str]:
        """Determine SSL verification setting."""
        if not verify:
            return False
        if ca_bundle:
            return ca_bundle
        return certifi.where()

    def _get_session(self) -> requests.Session:
        """Get or create the pooled session.

        The adapter is mounted with retries disabled so a failure surfaces on
        the first attempt. Executor threads share the one session.
        """
        with self._session_lock:
            if self._session is None:
                self._session = self._build_session()
            return self._session

    def _build_session(self) -> requests.Session:
        session = requests.Session()
        retry = Retry(total=0, read=False, raise_on_status=False)
        adapter = HTTPAdapter(
            max_retries=retry,
            pool_connections=4,
            pool_maxsize=8,
        )
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        session.verify = self._verify
        session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
        return session

    def close(self) -> None:
        """Close the session and release resources."""
        with self._session_lock:
            session, self._session = self._session, None
        if session is not None:
            session.close()

    def url_for(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def fetch(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        return self._request("GET", endpoint, params=params, timeout=timeout)

    def submit_command(self, command: AdminCommand, timeout: Optional[float] = None) -> Ack:
        body = self._request(
            command.method,
            command.endpoint,
            params=command.to_params(),
            json_body=command.to_body(),
            timeout=timeout,
        )
        if not isinstance(body, dict):
            raise TransportProtocolError(command.endpoint, "acknowledgement is not an object")
        message = body.get("message")
        if message is not None and not isinstance(message, str):
            raise TransportProtocolError(command.endpoint, "'message' is not a string")

        if not command.acknowledged:
            if message is None:
                raise TransportProtocolError(command.endpoint, "reply missing 'message'")
            return Ack(accepted=True, message=message)

        accepted = body.get("accepted")
        if not isinstance(accepted, bool):
            raise TransportProtocolError(
                command.endpoint, "acknowledgement 'accepted' is not a boolean"
            )
        return Ack(accepted=accepted, message=message or "")

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        session = self._get_session()
        effective_timeout = self.timeout if timeout is None else timeout
        try:
            resp = session.request(
                method,
                self.url_for(endpoint),
                params=params,
                json=json_body,
                timeout=effective_timeout,
            )
        except requests.exceptions.Timeout as e:
            raise TransportTimeout(endpoint, f"no response within {effective_timeout}s", e)
        except requests.exceptions.SSLError as e:
            raise TransportNetworkError(
                endpoint,
                "TLS/SSL error: certificate verify failed. Consider --insecure or --ca-bundle.",
                e,
            )
        except requests.exceptions.RequestException as e:
            raise TransportNetworkError(endpoint, str(e), e)

        if not 200 <= resp.status_code < 300:
            raise TransportProtocolError(
                endpoint,
                f"HTTP {resp.status_code} {resp.reason or ''}".strip(),
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise TransportProtocolError(endpoint, "response body is not valid JSON", e, resp.status_code)


__all__ = [
    "CacheServiceClient",
    "DEFAULT_BASE_URL",
    "DEFAULT_TIMEOUT",
    "normalize_base_url",
]
