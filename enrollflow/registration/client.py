"""
Secondary platform API client (httpx).

Transport errors (timeouts, refused connections) propagate as httpx exceptions so the
retry classifier can see them; HTTP failures are raised as SecondaryPlatformError with
the status code attached.
"""
from __future__ import annotations

import random
import string
import time
from typing import Any, Dict, Optional

import httpx

from enrollflow.observability.logging import log
from enrollflow.settings import settings
from enrollflow.store.models import Credentials

PASSWORD_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZabcdefghijkmnpqrstuvwxyz23456789"
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


class SecondaryPlatformError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def generate_temporary_password(rng: Optional[random.Random] = None, length: int = 8) -> str:
    rng = rng or random.SystemRandom()
    return "".join(rng.choice(PASSWORD_ALPHABET) for _ in range(length))


def generate_credentials(phone: str, enrollment_id: str, rng: Optional[random.Random] = None,
                         login_url: Optional[str] = None) -> Credentials:
    rng = rng or random.SystemRandom()
    suffix = "".join(rng.choice(_SUFFIX_ALPHABET) for _ in range(4))
    username = f"user{(phone or '')[-4:]}{suffix}"
    password = generate_temporary_password(rng)
    url = login_url or settings.SECONDARY_PLATFORM_URL or "the coaching app"
    instructions = "\n".join([
        "Welcome to the coaching platform!",
        "",
        "Your access credentials:",
        f"Username: {username}",
        f"Temporary Password: {password}",
        "",
        f"Please log in at: {url}",
        "",
        "Important: Please change your password after first login.",
        "",
        f"Your enrollment ID: {enrollment_id}",
        "",
        f"For support, contact us at {settings.SUPPORT_EMAIL}",
    ])
    return Credentials(
        username=username,
        temporaryPassword=password,
        enrollmentId=enrollment_id,
        accessInstructions=instructions,
    )


class SecondaryPlatformClient:
    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, client: Optional[httpx.Client] = None):
        self.base_url = (base_url if base_url is not None else settings.SECONDARY_PLATFORM_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.SECONDARY_PLATFORM_API_KEY
        self.timeout = float(timeout if timeout is not None else settings.SECONDARY_TIMEOUT_SEC)
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        if not self.base_url:
            raise SecondaryPlatformError("SECONDARY_PLATFORM_URL is not set")
        url = f"{self.base_url}{path}"
        start = time.time()
        if self._client is not None:
            resp = self._client.request(method, url, json=payload, headers=self._headers(), timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.request(method, url, json=payload, headers=self._headers())
        elapsed_ms = int((time.time() - start) * 1000)

        if not (200 <= resp.status_code < 300):
            try:
                log(
                    event="secondary_platform_non2xx",
                    path=path,
                    statusCode=int(resp.status_code),
                    elapsedMs=elapsed_ms,
                    responseText=(resp.text or "")[:300],
                )
            except Exception:
                pass
            raise SecondaryPlatformError(f"{method} {path} failed: HTTP {resp.status_code}", status=resp.status_code)

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}
        if isinstance(data, dict) and data.get("success") is False:
            raise SecondaryPlatformError(str(data.get("error") or f"{method} {path} rejected"))
        return data if isinstance(data, dict) else {}

    def create_enrollment(self, data: Dict[str, Any]) -> str:
        resp = self._request("POST", "/enrollments", data)
        enrollment_id = resp.get("userId") or resp.get("enrollmentId")
        if not enrollment_id:
            raise SecondaryPlatformError("Failed to create enrollment in secondary platform")
        return str(enrollment_id)

    def update_enrollment_payment(self, update: Dict[str, Any]) -> None:
        enrollment_id = update.get("enrollmentId")
        self._request("POST", f"/enrollments/{enrollment_id}/payment", update)

    def create_phone_user(self, phone: str, enrollment_id: str, temporary_password: str) -> Optional[str]:
        resp = self._request("POST", "/users/phone", {
            "phoneNumber": phone,
            "enrollmentId": enrollment_id,
            "temporaryPassword": temporary_password,
        })
        return resp.get("userId")

    def health_check(self) -> bool:
        try:
            self._request("GET", "/health")
            return True
        except Exception as e:
            log(event="secondary_platform_unhealthy", errorType=type(e).__name__, error=str(e)[:200])
            return False
