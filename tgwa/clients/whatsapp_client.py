"""
WhatsApp client manager talking to a WAHA-compatible HTTP API.
The HTTP API fronts a paired WhatsApp Web session; QR pairing and session
storage are handled there, this client only sends, edits and watches state.
"""
import asyncio
import logging
import mimetypes
import re
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse

import aiohttp

from tgwa.core.models import DestinationHandle, MediaKind, SessionState
from .base import GatewayError, GatewayResponseError, OutboundGateway

logger = logging.getLogger(__name__)

# WAHA session status -> lifecycle event
SESSION_STATUS_EVENTS = {
    "WORKING": "ready",
    "FAILED": "auth_failure",
    "STOPPED": "disconnected",
}

MEDIA_ENDPOINTS = {
    MediaKind.PHOTO: "/api/sendImage",
    MediaKind.VIDEO: "/api/sendVideo",
    MediaKind.ANIMATION: "/api/sendVideo",
    MediaKind.VOICE: "/api/sendVoice",
    MediaKind.AUDIO: "/api/sendFile",
    MediaKind.DOCUMENT: "/api/sendFile",
}

_PHONE_RE = re.compile(r"^\+?[\d\s\-()]+$")


def normalize_chat_id(chat_id: str) -> str:
    """Turn a configured destination into a WhatsApp chat id."""
    chat_id = (chat_id or "").strip()
    if not chat_id:
        raise GatewayError("No WhatsApp chat id configured")
    if "@" in chat_id:
        return chat_id
    if _PHONE_RE.match(chat_id):
        return re.sub(r"\D", "", chat_id) + "@c.us"
    raise GatewayError(f"Unrecognised WhatsApp chat id: {chat_id}")


def extract_serialized_id(data: Any) -> Optional[str]:
    """Pull the serialized id out of a send or join response."""
    if not isinstance(data, dict):
        return None
    message_id = data.get("id")
    if isinstance(message_id, dict):
        message_id = message_id.get("_serialized") or message_id.get("id")
    if not message_id and isinstance(data.get("key"), dict):
        message_id = data["key"].get("id")
    return str(message_id) if message_id else None


class WhatsAppClientManager(OutboundGateway):
    """Outbound gateway for one destination conversation."""

    def __init__(self, base_url: str, session_name: str = "default",
                 chat_id: Optional[str] = None, api_key: Optional[str] = None,
                 poll_interval: float = 15.0, request_timeout: float = 60.0,
                 http_session: Optional[aiohttp.ClientSession] = None):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.session_name = session_name
        self.chat_id = chat_id
        self.api_key = api_key
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self._http: Optional[aiohttp.ClientSession] = http_session
        self._owns_http = http_session is None
        self._poll_task: Optional[asyncio.Task] = None
        self._is_running = False

    async def start(self) -> None:
        """Open the HTTP session and begin watching the WhatsApp session state."""
        if self._is_running:
            return

        logger.info("Starting WhatsApp client...")
        if self._http is None:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )
            self._owns_http = True

        await self.refresh_state()
        self._poll_task = asyncio.create_task(self._poll_session_state())
        self._is_running = True
        logger.info(f"WhatsApp client started (session state: {self.state.value})")

    async def stop(self) -> None:
        """Stop polling and close the HTTP session."""
        if self._poll_task:
            self._poll_task.cancel()
            await asyncio.gather(self._poll_task, return_exceptions=True)
            self._poll_task = None

        if self._http is not None and self._owns_http:
            await self._http.close()
            self._http = None

        if self._is_running:
            self._is_running = False
            logger.info("WhatsApp client stopped")

    async def _poll_session_state(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.refresh_state()
            except Exception as e:
                logger.error(f"Error polling WhatsApp session state: {e}", exc_info=True)

    async def refresh_state(self) -> SessionState:
        """Query the session status and translate it into a lifecycle event."""
        try:
            data = await self._request("GET", f"/api/sessions/{quote(self.session_name, safe='')}")
        except GatewayError as e:
            return self.on_lifecycle_event("disconnected", str(e))

        status = str(data.get("status", "")).upper() if isinstance(data, dict) else ""
        event = SESSION_STATUS_EVENTS.get(status)
        if event is None:
            # STARTING / SCAN_QR_CODE: pairing is in progress on the API side
            if self.state is not SessionState.INITIALIZING:
                logger.info(f"WhatsApp session status {status or 'unknown'}, waiting for it to become ready")
            self._state = SessionState.INITIALIZING
            return self._state
        return self.on_lifecycle_event(event, status)

    def resolve_chat_id(self) -> str:
        """Resolve the destination conversation; called on every outbound request."""
        return normalize_chat_id(self.chat_id)

    async def resolve_invite_code(self, invite_code: str) -> str:
        """Join a group by invite code and use it as the destination."""
        data = await self._request(
            "POST",
            f"/api/{quote(self.session_name, safe='')}/groups/join",
            json={"code": invite_code}
        )
        chat_id = extract_serialized_id(data)
        if not chat_id:
            raise GatewayError(f"Invite code {invite_code} did not resolve to a group")
        self.chat_id = chat_id
        logger.info(f"Resolved invite code to WhatsApp chat {chat_id}")
        return chat_id

    async def send_text(self, body: str) -> DestinationHandle:
        """Send a text message to the destination chat."""
        self.ensure_ready()
        chat_id = self.resolve_chat_id()
        data = await self._request("POST", "/api/sendText", json={
            "session": self.session_name,
            "chatId": chat_id,
            "text": body
        })
        return self._handle_from_response(chat_id, data)

    async def send_photo(self, url: str, caption: str,
                         kind: MediaKind = MediaKind.PHOTO) -> DestinationHandle:
        """Send media by URL; the API downloads it and uploads to WhatsApp."""
        self.ensure_ready()
        chat_id = self.resolve_chat_id()
        payload: Dict[str, Any] = {
            "session": self.session_name,
            "chatId": chat_id,
            "file": self._file_payload(url, kind),
        }
        if caption:
            payload["caption"] = caption
        if kind is MediaKind.ANIMATION:
            # Plays looped and muted, like the source GIF
            payload["sendVideoAsGif"] = True
        data = await self._request("POST", MEDIA_ENDPOINTS[kind], json=payload)
        return self._handle_from_response(chat_id, data)

    async def edit_text(self, handle: DestinationHandle, body: str) -> None:
        """Edit a message previously sent by this session."""
        self.ensure_ready()
        path = "/api/{}/chats/{}/messages/{}".format(
            quote(self.session_name, safe=""),
            quote(handle.chat_id, safe=""),
            quote(handle.message_id, safe="")
        )
        await self._request("PUT", path, json={"text": body})

    @staticmethod
    def _file_payload(url: str, kind: MediaKind) -> Dict[str, str]:
        file_info = {"url": url}
        path = urlparse(url).path
        mimetype, _ = mimetypes.guess_type(path)
        if mimetype:
            file_info["mimetype"] = mimetype
        elif kind is MediaKind.PHOTO:
            file_info["mimetype"] = "image/jpeg"
        if kind in (MediaKind.DOCUMENT, MediaKind.AUDIO):
            filename = path.rsplit("/", 1)[-1]
            if filename:
                file_info["filename"] = filename
        return file_info

    @staticmethod
    def _handle_from_response(chat_id: str, data: Any) -> DestinationHandle:
        message_id = extract_serialized_id(data)
        if not message_id:
            raise GatewayResponseError(f"Send response carried no message id: {str(data)[:200]}")
        return DestinationHandle(chat_id=chat_id, message_id=message_id)

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        if self._http is None:
            raise GatewayError("WhatsApp client not started")

        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key

        try:
            async with self._http.request(method, f"{self.base_url}{path}", json=json, headers=headers) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise GatewayError(f"{method} {path} failed ({resp.status}): {text[:200]}")
                if resp.status == 204:
                    return {}
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise GatewayError(f"{method} {path} failed: {e}") from e

    @property
    def is_running(self) -> bool:
        """Check if the client is currently running."""
        return self._is_running
