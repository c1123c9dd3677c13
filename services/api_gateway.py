"""
API Gateway - the single chokepoint for calls to the remote wallet API

Responsibilities, in request order:
1. per-user, per-path rate limiting (no network call when exhausted)
2. bearer auth from the credential store, refreshed when near expiry
3. masked request/response logging with timing
4. mapping of non-2xx responses and transport failures to typed errors;
   a 401 clears the user's credentials so the next call requires login

Requests are never retried here. Money-moving endpoints in particular must
surface their failure to the flow that issued them.
"""

import json
import time
import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from config import Config
from services.credential_store import CredentialStore
from services.rate_limiter import ApiRateLimiter
from utils.data_sanitizer import mask_token, sanitize_for_log
from utils.exception_handler import AuthExpired, NotAuthenticated, RemoteApiError

logger = logging.getLogger(__name__)


def extract_error_message(data: Any) -> Optional[str]:
    """Server-provided message from an error body, if any"""
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        if isinstance(message, list):
            message = "; ".join(str(item) for item in message)
        if isinstance(message, dict):
            message = message.get("message")
        if message:
            return str(message)
        if data.get("property"):
            return f"Validation error for {data['property']}"
    if isinstance(data, str) and data.strip():
        return data.strip()[:200]
    return None


class ApiGateway:
    """aiohttp client for the wallet API"""

    def __init__(
        self,
        credentials: CredentialStore,
        rate_limiter: ApiRateLimiter,
        base_url: str = Config.API_BASE_URL,
        timeout: int = Config.API_TIMEOUT_SECONDS,
    ):
        self.credentials = credentials
        self.rate_limiter = rate_limiter
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            logger.info(f"🌐 API session opened for {self.base_url}")

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.info("🌐 API session closed")
        self._session = None

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        payload: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]],
    ) -> Tuple[int, Any]:
        """Perform the HTTP exchange and return (status, parsed body)"""
        await self.start()
        kwargs: Dict[str, Any] = {"headers": headers}
        if params:
            kwargs["params"] = {k: str(v) for k, v in params.items() if v is not None}
        if payload is not None and method.upper() in ("POST", "PUT", "PATCH"):
            kwargs["json"] = payload

        async with self._session.request(method.upper(), url, **kwargs) as response:
            body = await response.text()
            if not body:
                return response.status, None
            try:
                return response.status, json.loads(body)
            except ValueError:
                return response.status, body

    async def request(
        self,
        method: str,
        path: str,
        user_id: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        rate_limit_key: Optional[str] = None,
    ) -> Any:
        """
        Call ``path`` and return the parsed response body.

        Args:
            user_id: chat user on whose behalf the call is made; enables rate
                limiting and bearer auth
            rate_limit_key: identifier for unauthenticated calls that must still
                be rate limited (e.g. the email address for OTP requests)

        Raises:
            RateLimited: the per-user budget for this path is exhausted
            NotAuthenticated: ``user_id`` has no usable token
            AuthExpired: the API answered 401
            RemoteApiError: any other non-2xx status or a transport failure
        """
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json"}

        limiter_id = user_id if user_id is not None else rate_limit_key
        if limiter_id is not None:
            self.rate_limiter.acquire(limiter_id, path)

        if user_id is not None:
            token = await self.credentials.get_token(user_id)
            if not token:
                raise NotAuthenticated()
            headers["Authorization"] = f"Bearer {token['accessToken']}"
            logger.debug(f"Using token for user {user_id}: {mask_token(token['accessToken'])}")

        logger.info(f"➡️ API_REQUEST: {method.upper()} {path} user={user_id}")
        logger.debug(f"Headers: {sanitize_for_log(headers)}")
        if params:
            logger.info(f"Query params: {sanitize_for_log(params)}")
        if payload is not None:
            logger.info(f"Request payload: {sanitize_for_log(payload)}")

        start_time = time.monotonic()
        try:
            status, data = await self._send(method, url, headers, payload, params)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"❌ API_CONNECTION_ERROR: {method.upper()} {path}: {e!r}")
            raise RemoteApiError(f"Connection error: {str(e) or type(e).__name__}")

        duration = time.monotonic() - start_time
        logger.info(f"⬅️ API_RESPONSE: {method.upper()} {path} status={status} duration={duration:.2f}s")
        logger.debug(f"Response data: {sanitize_for_log(data)}")

        if 200 <= status < 300:
            return data

        message = extract_error_message(data)
        logger.error(f"❌ API_ERROR ({status}): {method.upper()} {path}: {sanitize_for_log(data)}")

        if status == 401 and user_id is not None:
            logger.info(f"Unauthorized error for user {user_id}. Clearing credentials.")
            await self.credentials.clear_session(user_id)
            raise AuthExpired()

        raise RemoteApiError(message or f"API Error: {status}", status_code=status)

    async def get(self, path: str, user_id: Optional[int] = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, user_id=user_id, params=params)

    async def post(self, path: str, user_id: Optional[int] = None, payload: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return await self.request("POST", path, user_id=user_id, payload=payload, **kwargs)
