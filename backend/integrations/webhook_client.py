"""Outbound HTTP for ``webhook`` steps and event forwarding.

Every request is checked against an SSRF guard, signed with HMAC-SHA256
when a signing secret is configured, and its failure translated into
the engine's error taxonomy:

- timeout / connection failure / 5xx / 408 / 429  -> TransientError
- other 4xx, unsafe URL                           -> ValidationError
"""

import ipaddress
import json
from typing import Any, Mapping, Optional, Sequence
from urllib.parse import urlparse

import httpx
import structlog

from core.exceptions import TransientError, ValidationError, error_for_http_status
from core.webhook_signing import sign_webhook_payload
from workflow.ports import EventPublisher, WebhookClient

logger = structlog.get_logger(__name__)

USER_AGENT = "business-automation-engine/1.0"
BODY_METHODS = ("POST", "PUT", "PATCH")
FORBIDDEN_PORTS = (5432, 6379)  # postgres, redis


def _is_private_ip(ip_str: str) -> bool:
    """Check if an IP address is private, loopback, link-local or reserved."""
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved


def validate_url_safety(url: str) -> None:
    """Validate a URL for SSRF protection.

    Blocks non-HTTP(S) schemes, localhost, literal private IPs and
    internal service ports. Host names are not resolved.

    Raises:
        ValidationError: If the URL is unsafe
    """
    parsed = urlparse(url)

    if parsed.scheme.lower() not in ("http", "https"):
        raise ValidationError(f"Unsupported scheme: {parsed.scheme or '(none)'}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValidationError("URL must have a valid hostname")

    if hostname.lower() in ("localhost", "localhost.localdomain"):
        raise ValidationError("Connections to localhost are not allowed")

    if _is_private_ip(hostname):
        raise ValidationError(f"Connections to private IP {hostname} are not allowed")

    try:
        port = parsed.port
    except ValueError:
        raise ValidationError(f"Invalid port in URL: {url}")
    if port in FORBIDDEN_PORTS:
        raise ValidationError(f"Connections to internal port {port} are not allowed")


def _encode_body(body: Any) -> tuple[bytes, str]:
    if isinstance(body, (bytes, bytearray)):
        return bytes(body), "application/octet-stream"
    if isinstance(body, str):
        return body.encode(), "text/plain; charset=utf-8"
    return json.dumps(body, default=str).encode(), "application/json"


class HttpWebhookClient(WebhookClient):
    """httpx-backed webhook sender.

    Config accepted by ``send``:
        url: Target URL (required)
        method: HTTP method (default POST)
        headers: Additional headers
        body: Request body (mapping/list → JSON, str → text)
        timeout: Per-request timeout override in seconds
    """

    def __init__(
        self,
        timeout: float = 15.0,
        signing_secret: str = "",
        allow_private_hosts: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout
        self._signing_secret = signing_secret
        self._allow_private_hosts = allow_private_hosts
        self._transport = transport

    async def send(self, config: Mapping[str, Any]) -> dict[str, Any]:
        url = config.get("url")
        if not url:
            raise ValidationError("Missing required config: url")
        if not self._allow_private_hosts:
            validate_url_safety(url)

        method = str(config.get("method") or "POST").upper()
        headers = {"User-Agent": USER_AGENT, **dict(config.get("headers") or {})}

        content = None
        if method in BODY_METHODS and config.get("body") is not None:
            content, content_type = _encode_body(config["body"])
            headers.setdefault("Content-Type", content_type)
        if self._signing_secret:
            headers.update(sign_webhook_payload(content or b"", self._signing_secret))

        timeout = float(config.get("timeout") or self._timeout)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.request(method, url, content=content, headers=headers)
        except httpx.TimeoutException:
            raise TransientError(f"Webhook request to {url} timed out after {timeout:g}s")
        except httpx.RequestError as e:
            raise TransientError(f"Webhook request to {url} failed: {e}")

        error = error_for_http_status(response.status_code, url)
        if error is not None:
            logger.warning("Webhook rejected", url=url, status=response.status_code)
            raise error

        try:
            data = response.json()
        except ValueError:
            data = response.text

        logger.info("Webhook delivered", url=url, method=method, status=response.status_code)
        return {"status": response.status_code, "response": data, "success": True}


class WebhookEventPublisher(EventPublisher):
    """Forwards ingested business events to subscriber URLs."""

    def __init__(self, client: WebhookClient, urls: Sequence[str]):
        self._client = client
        self._urls = list(urls)

    async def publish(self, event: Mapping[str, Any]) -> None:
        failures = []
        for url in self._urls:
            try:
                await self._client.send({
                    "url": url,
                    "method": "POST",
                    "headers": {"X-Workflow-Event": str(event.get("type", ""))},
                    "body": dict(event),
                })
            except (TransientError, ValidationError) as e:
                logger.warning("Event forwarding failed", url=url, event_id=event.get("id"), error=e.message)
                failures.append(url)
        if failures:
            raise TransientError(f"Event {event.get('id')} not delivered to {len(failures)} subscriber(s)")
