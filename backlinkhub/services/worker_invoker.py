"""
Worker Invoker
==============

Fires a per-row worker by name through the functions gateway:
POST <functions_url>/<name> with a JSON payload and the service-role
bearer. A non-2xx answer or a transport error raises
WorkerInvocationError; callers collect those per row.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from backlinkhub.config import settings
from backlinkhub.core.errors import WorkerInvocationError

logger = logging.getLogger(__name__)


class WorkerInvoker:
    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "WorkerInvoker":
        settings.require("functions_url", "service_role_key")
        return cls(settings.functions_url, settings.service_role_key, settings.worker_timeout_s)

    def url_for(self, name: str) -> str:
        return f"{self._base_url}/{name}"

    async def invoke(self, name: str, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._service_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self.url_for(name), json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise WorkerInvocationError(name, f"{name} unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise WorkerInvocationError(
                name,
                f"{name} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        logger.debug("Invoked %s payload=%s status=%d", name, payload, response.status_code)
        try:
            return response.json()
        except ValueError:
            return {}
