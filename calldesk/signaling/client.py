"""Signaling backend clients."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional
from urllib.parse import urlencode

import httpx
import websockets
from websockets.exceptions import WebSocketException

from ..errors import TransportError
from .events import CHANNEL_KEYS, SignalingEvent, first_present, parse_event

logger = logging.getLogger(__name__)


class SignalingClient(ABC):
    """Command and event contract the call core relies on."""

    @abstractmethod
    async def dial(self, extension: str) -> str:
        """Place a call, returning the backend channel id."""

    @abstractmethod
    async def hangup(self, channel_id: str) -> None:
        """Tear down a channel."""

    @abstractmethod
    async def accept_offer(self, offer_id: str) -> str:
        """Answer an inbound offer, returning the channel id of the call."""

    @abstractmethod
    async def reject_offer(self, offer_id: str) -> None:
        """Decline an inbound offer."""

    @abstractmethod
    def events(self, extension: str) -> AsyncIterator[SignalingEvent]:
        """Inbound events for an extension, in arrival order."""

    @property
    def connected(self) -> bool:
        return False

    async def close(self) -> None:
        """Release transport resources."""


class StatusBackend(ABC):
    """Presence endpoint of the backend."""

    @abstractmethod
    async def push_status(self, extension: str, status: str) -> None:
        """Publish presence for an extension."""

    async def close(self) -> None:
        """Release transport resources."""


def _auth_headers(token: Optional[str]) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


async def _request(
    http: httpx.AsyncClient,
    method: str,
    path: str,
    json: Optional[dict] = None,
) -> dict:
    """Send a request, mapping every transport or HTTP failure to TransportError."""
    try:
        response = await http.request(method, path, json=json)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise TransportError(
            f"{method} {path} failed with HTTP {e.response.status_code}"
        ) from e
    except httpx.HTTPError as e:
        raise TransportError(f"{method} {path} failed: {e}") from e

    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError as e:
        raise TransportError(f"{method} {path} returned invalid JSON") from e
    return data if isinstance(data, dict) else {}


class HttpSignalingClient(SignalingClient):
    """Signaling over HTTP commands and a websocket event stream."""

    def __init__(
        self,
        base_url: str,
        ws_url: str,
        token: Optional[str] = None,
        request_timeout: float = 10.0,
        reconnect_interval: float = 5.0,
    ):
        self.base_url = base_url.rstrip('/')
        self.ws_url = ws_url
        self.token = token
        self.reconnect_interval = reconnect_interval
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=_auth_headers(token),
            timeout=request_timeout,
        )
        self._ws = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def dial(self, extension: str) -> str:
        data = await _request(self._http, "POST", "/api/calls/dial", {"extension": extension})
        channel = first_present(data, CHANNEL_KEYS)
        if not channel:
            raise TransportError("Dial response did not include a channel id")
        logger.info(f"Dialed {extension}, channel {channel}")
        return channel

    async def hangup(self, channel_id: str) -> None:
        await _request(self._http, "POST", "/api/calls/hangup", {"channel": channel_id})
        logger.info(f"Hung up channel {channel_id}")

    async def accept_offer(self, offer_id: str) -> str:
        data = await _request(self._http, "POST", f"/api/calls/{offer_id}/accept")
        return first_present(data, CHANNEL_KEYS) or offer_id

    async def reject_offer(self, offer_id: str) -> None:
        await _request(self._http, "POST", f"/api/calls/{offer_id}/reject")

    def _stream_url(self, extension: str) -> str:
        separator = "&" if "?" in self.ws_url else "?"
        return f"{self.ws_url}{separator}{urlencode({'extension': extension})}"

    async def events(self, extension: str) -> AsyncIterator[SignalingEvent]:
        """
        Yield events from the websocket, reconnecting until cancelled.

        Malformed messages are logged and skipped.
        """
        url = self._stream_url(extension)
        while True:
            try:
                logger.info(f"Connecting signaling stream: {self.ws_url}")
                async with websockets.connect(
                    url,
                    additional_headers=_auth_headers(self.token),
                ) as ws:
                    self._ws = ws
                    logger.info(f"Signaling stream connected for extension {extension}")
                    async for message in ws:
                        try:
                            event = parse_event(message)
                        except ValueError as e:
                            logger.warning(f"Dropping malformed signaling message: {e}")
                            continue
                        if event is not None:
                            yield event
                logger.warning("Signaling stream closed by backend")
            except (WebSocketException, OSError) as e:
                logger.warning(f"Signaling stream error: {e}")
            finally:
                self._ws = None

            await asyncio.sleep(self.reconnect_interval)

    async def close(self) -> None:
        await self._http.aclose()


class HttpStatusBackend(StatusBackend):
    """Presence updates over HTTP."""

    def __init__(self, base_url: str, token: Optional[str] = None, request_timeout: float = 10.0):
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip('/'),
            headers=_auth_headers(token),
            timeout=request_timeout,
        )

    async def push_status(self, extension: str, status: str) -> None:
        await _request(
            self._http, "PUT", "/api/users/status",
            {"extension": extension, "status": status},
        )

    async def close(self) -> None:
        await self._http.aclose()
