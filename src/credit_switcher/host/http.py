"""httpx adapter for an opencode-style host server."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from ..storage.models import ModelRef
from . import payloads
from .gateway import HostError, UserMessage

logger = logging.getLogger(__name__)

SERVICE_NAME = "credit-switcher"


class HttpHostGateway:
    """Talk to the host over its HTTP API.

    Pass ``client`` to share a pre-built :class:`httpx.AsyncClient`; the gateway
    only closes clients it created itself.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        directory: str | None = None,
        client: httpx.AsyncClient | None = None,
        supports_confirm: bool = True,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._params = {"directory": directory} if directory else {}
        self.supports_confirm = supports_confirm

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, url: str, *, json_body: Any = None) -> Any:
        try:
            response = await self._client.request(method, url, params=self._params, json=json_body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise HostError(f"{method} {url} failed: {exc}") from exc
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def list_providers(self) -> list[dict[str, Any]]:
        return payloads.providers_from(await self._request("GET", "/config/providers"))

    async def get_session_model(self, session_id: str) -> ModelRef | None:
        return payloads.session_model_from(await self._request("GET", f"/session/{session_id}"))

    async def set_session_model(self, session_id: str, model: ModelRef) -> bool:
        try:
            await self._request("PATCH", f"/session/{session_id}", json_body={"model": model.as_host_payload()})
        except HostError as exc:
            logger.debug("Session model update failed", extra={"session_id": session_id, "error": str(exc)})
            return False
        return True

    async def get_last_user_message(self, session_id: str) -> UserMessage | None:
        parts = payloads.last_user_parts(await self._request("GET", f"/session/{session_id}/message"))
        return UserMessage(parts=parts) if parts else None

    async def send_prompt(self, session_id: str, model: ModelRef, parts: list[dict[str, Any]]) -> None:
        await self._request(
            "POST",
            f"/session/{session_id}/message",
            json_body={"model": model.as_host_payload(), "parts": parts},
        )

    async def show_toast(self, message: str, variant: str) -> None:
        await self._request("POST", "/tui/show-toast", json_body={"message": message, "variant": variant})

    async def show_confirm(self, message: str) -> bool | None:
        body = {"message": message, "confirmText": "Retry", "cancelText": "Cancel"}
        return payloads.confirm_answer(await self._request("POST", "/tui/show-confirm", json_body=body))

    async def log(self, level: str, message: str, extra: dict[str, Any] | None = None) -> None:
        body = {
            "service": SERVICE_NAME,
            "level": "warn" if level == "warning" else level,
            "message": message,
            "extra": json.loads(json.dumps(extra or {}, default=str)),
        }
        try:
            await self._request("POST", "/log", json_body=body)
        except HostError:
            return

    async def iter_events(self) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded events from the host's server-sent event stream."""

        async with self._client.stream("GET", "/event", params=self._params, timeout=None) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[len("data:") :].strip()
                if not data:
                    continue
                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug("Skipping undecodable event line", extra={"line": data[:200]})
                    continue
                if isinstance(event, dict):
                    yield event


__all__ = ["HttpHostGateway", "SERVICE_NAME"]
