"""Slack Web API notifier.

Thin async wrapper over the handful of Web API methods the tracker needs:
chat.postMessage, conversations.list, conversations.create and pins.add.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from copytrade_tracker.alerter.models import FormattedAlert
from copytrade_tracker.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://slack.com/api"
DEFAULT_TIMEOUT_SECONDS = 10.0
CHANNEL_PAGE_SIZE = 200


class SlackNotifier:
    """Posts messages and manages channels through the Slack Web API.

    Slack reports most failures as HTTP 200 with `ok: false`; those, transport
    errors and timeouts all raise UpstreamUnavailableError(service="slack").

    Example:
        ```python
        async with httpx.AsyncClient() as client:
            slack = SlackNotifier(client, token="xoxb-...")
            ts = await slack.post("C0123", formatted)
            await slack.post("C0123", reply, thread_id=ts)
        ```
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        token: str,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout_seconds

    async def _call(
        self,
        method: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._token}"}
        url = f"{self._api_url}/{method}"
        try:
            if json is not None:
                response = await self._client.post(url, json=json, headers=headers, timeout=self._timeout)
            else:
                response = await self._client.get(url, params=params, headers=headers, timeout=self._timeout)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamUnavailableError(f"Slack {method} failed: {e}", service="slack") from e

        if not isinstance(data, dict) or not data.get("ok"):
            error = data.get("error", "unknown_error") if isinstance(data, dict) else "bad_payload"
            raise UpstreamUnavailableError(f"Slack {method} returned error: {error}", service="slack")
        return data

    async def post(
        self,
        channel: str,
        message: FormattedAlert,
        *,
        thread_id: str | None = None,
        reply_broadcast: bool = False,
    ) -> str:
        """Post a message, optionally as a thread reply.

        Args:
            channel: Channel ID.
            message: Formatted message.
            thread_id: Parent message ts to reply under.
            reply_broadcast: Also show a thread reply in the channel.

        Returns:
            The posted message's ts (its handle for threading and pinning).
        """
        payload: dict[str, Any] = {
            "channel": channel,
            "text": message.text,
            "blocks": message.blocks,
        }
        if thread_id:
            payload["thread_ts"] = thread_id
            if reply_broadcast:
                payload["reply_broadcast"] = True

        data = await self._call("chat.postMessage", json=payload)
        ts = str(data.get("ts", ""))
        logger.debug("Posted to %s ts=%s thread=%s", channel, ts, thread_id)
        return ts

    async def find_channel(self, name: str) -> str | None:
        """Return the ID of the public channel called `name`, or None.

        Walks every page of conversations.list.
        """
        cursor: str | None = None
        while True:
            params: dict[str, Any] = {
                "types": "public_channel",
                "exclude_archived": "true",
                "limit": CHANNEL_PAGE_SIZE,
            }
            if cursor:
                params["cursor"] = cursor
            data = await self._call("conversations.list", params=params)

            for channel in data.get("channels") or []:
                if channel.get("name") == name:
                    return str(channel["id"])

            cursor = (data.get("response_metadata") or {}).get("next_cursor") or None
            if not cursor:
                return None

    async def create_channel(self, name: str) -> str:
        """Create a public channel and return its ID."""
        data = await self._call("conversations.create", json={"name": name})
        channel_id = str(data["channel"]["id"])
        logger.info("Created Slack channel #%s (%s)", name, channel_id)
        return channel_id

    async def pin(self, channel: str, ts: str) -> None:
        """Pin message `ts` in `channel`."""
        await self._call("pins.add", json={"channel": channel, "timestamp": ts})
