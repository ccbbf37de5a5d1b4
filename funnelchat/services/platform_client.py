"""HTTP client for the storefront platform API.

Covers the three calls the engine depends on: looking up an experience's app
id (affiliate attribution), looking up a company's route (deep links) and
sending a direct message to a user.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import httpx

from funnelchat.config import settings
from funnelchat.logging_config import get_logger

logger = get_logger("platform_client")

AFFILIATE_PARAMS = ("app=", "ref=")


@dataclass
class DeliveryResult:
    """Outcome of a direct message send."""

    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def delivered(message_id: Optional[str] = None) -> "DeliveryResult":
        return DeliveryResult(ok=True, message_id=message_id)

    @staticmethod
    def failed(error: str, code: str = "delivery_failed") -> "DeliveryResult":
        return DeliveryResult(ok=False, error=error, error_code=code)


class PlatformClient:
    """Thin wrapper over the platform REST API."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url or settings.platform_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.platform_api_key
        self.timeout = timeout if timeout is not None else settings.platform_timeout_seconds

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _make_request(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        """Make request to the platform API. Never raises; failures come back with ok=False."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, url, json=data, headers=self._headers())
                if response.status_code >= 400:
                    logger.warning(f"Platform API {method} {path} returned {response.status_code}")
                    return {"ok": False, "status_code": response.status_code, "error": response.text}
                payload = response.json() if response.content else {}
                return {"ok": True, "status_code": response.status_code, "data": payload}
        except Exception as e:
            logger.error(f"Platform API error: {e}")
            return {"ok": False, "error": str(e)}

    def get_experience_app_id(self, platform_experience_id: str) -> Optional[str]:
        result = self._make_request("GET", f"/experiences/{platform_experience_id}")
        if not result.get("ok"):
            return None
        app = (result.get("data") or {}).get("app") or {}
        return app.get("id")

    def get_company_route(self, platform_company_id: str) -> Optional[str]:
        result = self._make_request("GET", f"/companies/{platform_company_id}")
        if not result.get("ok"):
            return None
        return (result.get("data") or {}).get("route")

    def send_direct_message(self, external_user_id: str, text: str) -> DeliveryResult:
        result = self._make_request("POST", "/messages", {"to_user_id": external_user_id, "message": text})
        if result.get("ok"):
            data = result.get("data") or {}
            return DeliveryResult.delivered(data.get("id"))
        return DeliveryResult.failed(str(result.get("error", "unknown error")))


class DirectMessenger(ABC):
    @abstractmethod
    def send(self, external_user_id: str, text: str) -> DeliveryResult: ...


class AppLinkGenerator(ABC):
    @abstractmethod
    def generate(self, platform_experience_id: str, platform_company_id: str, name: str) -> Optional[str]:
        """Return the app deep link, or None when it cannot be built."""


class PlatformMessenger(DirectMessenger):
    """Direct messenger backed by the platform API."""

    def __init__(self, client: Optional[PlatformClient] = None):
        self.client = client or PlatformClient()

    def send(self, external_user_id: str, text: str) -> DeliveryResult:
        return self.client.send_direct_message(external_user_id, text)


def has_affiliate_params(url: str) -> bool:
    return any(param in url for param in AFFILIATE_PARAMS)


def append_tracking_param(url: str, app_id: str) -> str:
    """Append app=<app_id> to url unless it already carries affiliate params."""
    if has_affiliate_params(url):
        return url
    parsed = urlparse(url)
    query = parse_qsl(parsed.query, keep_blank_values=True)
    query.append(("app", app_id))
    return urlunparse(parsed._replace(query=urlencode(query)))


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


class PlatformAppLinkGenerator(AppLinkGenerator):
    """Builds app deep links of the form {platform_app_url}/{company_route}/{slug}/app/."""

    def __init__(self, client: Optional[PlatformClient] = None, app_url: Optional[str] = None):
        self.client = client or PlatformClient()
        self.app_url = (app_url or settings.platform_app_url).rstrip("/")

    def generate(self, platform_experience_id: str, platform_company_id: str, name: str) -> Optional[str]:
        route = self.client.get_company_route(platform_company_id)
        if not route:
            return None
        experience_suffix = platform_experience_id.replace("exp_", "")
        slug = slugify(name)
        slug = f"{slug}-{experience_suffix}" if slug else experience_suffix
        return f"{self.app_url}/{route}/{slug}/app/"
