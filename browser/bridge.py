"""HTTP bridge to the browser extension that owns windows and tabs"""

import logging
from typing import Any, Dict, Optional

import httpx

from core.interfaces import WindowGateway, TabMessenger, AuthProvider
from core.models import WindowBounds, WindowHandle, ScreenBounds, PromptResponse
from core.exceptions import BridgeError, WindowCreationError, ExecutionError
from config import settings


logger = logging.getLogger(__name__)


class StaticTokenProvider(AuthProvider):
    """Bearer token fixed at startup"""

    def __init__(self, token: Optional[str] = None):
        self.token = token if token is not None else settings.BROWSER_BRIDGE_TOKEN

    async def get_auth_token(self) -> str:
        return self.token or ""


class BrowserBridge(WindowGateway, TabMessenger):
    """
    Window and tab operations over the extension's local HTTP bridge.

    Endpoints:
        POST   /windows            open a popup window, returns windowId and tabId
        DELETE /windows/{id}       close a window
        GET    /screen             primary display work area
        GET    /tabs/{id}/ready    content script readiness
        POST   /tabs/{id}/prompt   submit a prompt and wait for the answer
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth: Optional[AuthProvider] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.BROWSER_BRIDGE_URL or "http://127.0.0.1:8765").rstrip("/")
        self.auth = auth
        self.timeout = timeout or settings.BRIDGE_TIMEOUT
        self.transport = transport

    async def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.auth:
            token = await self.auth.get_auth_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        headers = await self._headers()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=timeout or self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.request(method, path, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BridgeError(
                f"{method} {path} returned {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise BridgeError(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise BridgeError(f"{method} {path} failed: {e}") from e

        if not response.content:
            return {}
        return response.json()

    # ─────────────────────────────────────────────────────────
    # WindowGateway
    # ─────────────────────────────────────────────────────────

    async def open_window(self, url: str, bounds: WindowBounds) -> WindowHandle:
        try:
            data = await self._request("POST", "/windows", {
                "url": url,
                "type": "popup",
                **bounds.model_dump(),
            })
            return WindowHandle(window_id=data["windowId"], tab_id=data["tabId"])
        except (BridgeError, KeyError) as e:
            raise WindowCreationError(f"Could not open {url}: {e}") from e

    async def close_window(self, window_id: int) -> None:
        await self._request("DELETE", f"/windows/{window_id}")

    async def query_screen_bounds(self) -> ScreenBounds:
        data = await self._request("GET", "/screen")
        return ScreenBounds(
            width=data["width"],
            height=data["height"],
            left=data.get("left", 0),
            top=data.get("top", 0),
        )

    # ─────────────────────────────────────────────────────────
    # TabMessenger
    # ─────────────────────────────────────────────────────────

    async def is_ready(self, tab_id: int) -> bool:
        data = await self._request("GET", f"/tabs/{tab_id}/ready")
        return bool(data.get("ready"))

    async def send_prompt(
        self,
        tab_id: int,
        prompt: str,
        timeout: float,
        model: Optional[str] = None,
        function: Optional[str] = None,
    ) -> PromptResponse:
        payload = {
            "prompt": prompt,
            "timeoutMs": int(timeout * 1000),
            "model": model,
            "function": function,
        }
        try:
            # The bridge holds the request open while the AI answers
            data = await self._request("POST", f"/tabs/{tab_id}/prompt", payload, timeout=timeout + self.timeout)
        except BridgeError as e:
            raise ExecutionError(f"Prompt to tab {tab_id} failed: {e}") from e

        return PromptResponse(
            success=bool(data.get("success")),
            response_text=data.get("response") or "",
            error=data.get("error"),
            url=data.get("url"),
            model=data.get("model"),
        )
