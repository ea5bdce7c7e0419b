"""Resilient Slack Web API client.

Every call goes through :func:`retry.with_retry`; failures surface as the
typed errors from :mod:`errors`.  Author names are resolved through one
:class:`~directory.DirectoryCache` per user token.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Any, TypeVar

import httpx
from slack_sdk.web.async_client import AsyncWebClient

from config import SlackZcConfig
from directory import DirectoryCache
from errors import ApiCallError, ApiError, classify_error
from file_util import atomic_write
from models import AuthInfo, Channel, FileInfo, Message, User
from retry import with_retry

logger = logging.getLogger("slackzc.slack_api")

T = TypeVar("T")

USER_AGENT_PREFIX = "slack-zc/0.2"
PAGE_LIMIT = 200

ClientFactory = Callable[[str], AsyncWebClient]


class SlackApi:
    """Async wrapper around ``AsyncWebClient`` with retry and a user directory."""

    def __init__(
        self,
        config: SlackZcConfig,
        *,
        client_factory: ClientFactory | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory or self._default_client
        self._http_transport = http_transport
        self._clients: dict[str, AsyncWebClient] = {}
        self._directories: dict[str, DirectoryCache] = {}

    def _default_client(self, token: str) -> AsyncWebClient:
        # Retries are owned by with_retry, so the SDK's own handlers are disabled
        return AsyncWebClient(
            token=token or None,
            timeout=int(self._config.api_timeout),
            user_agent_prefix=USER_AGENT_PREFIX,
            retry_handlers=[],
        )

    def _client(self, token: str) -> AsyncWebClient:
        client = self._clients.get(token)
        if client is None:
            client = self._client_factory(token)
            self._clients[token] = client
        return client

    async def _call(self, context: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run *fn* under the retry policy, converting failures to :class:`ApiError`."""

        async def attempt() -> T:
            try:
                return await fn()
            except ApiError:
                raise
            except Exception as exc:
                raise classify_error(exc) from exc

        return await with_retry(
            attempt,
            context=context,
            max_retries=self._config.max_retries,
            base_delay=self._config.retry_base_delay,
            max_delay=self._config.retry_max_delay,
            rate_limit_delay=self._config.rate_limit_fallback,
        )

    # --- Directory ---

    def directory(self, token: str) -> DirectoryCache:
        """Return the directory cache shared by everything using *token*."""
        cache = self._directories.get(token)
        if cache is None:
            cache = DirectoryCache(self._config.directory_ttl)
            self._directories[token] = cache
        return cache

    async def user_directory(self, token: str) -> Mapping[str, str]:
        """Return user id → display name, refreshing the cache when stale."""
        return await self.directory(token).get(
            functools.partial(self.list_users, token)
        )

    # --- Auth ---

    async def test_auth(self, token: str) -> AuthInfo:
        client = self._client(token)
        data = await self._call("auth.test", client.auth_test)
        return AuthInfo(
            team_id=data.get("team_id") or "",
            team=data.get("team") or "",
            user_id=data.get("user_id") or "",
        )

    async def exchange_oauth_code(
        self, client_id: str, client_secret: str, code: str, redirect_uri: str
    ) -> Mapping[str, Any]:
        """Call ``oauth.v2.access`` and return the raw payload."""
        client = self._client("")
        return await self._call(
            "oauth.v2.access",
            functools.partial(
                client.oauth_v2_access,
                client_id=client_id,
                client_secret=client_secret,
                code=code,
                redirect_uri=redirect_uri,
            ),
        )

    async def open_connection_url(self, app_token: str) -> str:
        """Mint a fresh Socket Mode WebSocket URL with the app-level token."""
        client = self._client(app_token)
        data = await self._call(
            "apps.connections.open",
            functools.partial(client.apps_connections_open, app_token=app_token),
        )
        url = data.get("url")
        if not url:
            raise ApiCallError("No URL in response")
        return url

    # --- Conversations ---

    async def _paginate(
        self, context: str, method: Callable[..., Awaitable[Any]], key: str, **kwargs: Any
    ) -> list[Any]:
        items: list[Any] = []
        cursor: str | None = None
        while True:
            page_kwargs = dict(kwargs)
            if cursor:
                page_kwargs["cursor"] = cursor
            data = await self._call(context, functools.partial(method, **page_kwargs))
            items.extend(data.get(key) or [])
            metadata = data.get("response_metadata") or {}
            cursor = metadata.get("next_cursor") if isinstance(metadata, Mapping) else None
            if not cursor:
                return items

    async def list_channels(self, token: str) -> list[Channel]:
        """Public and private channels, archived ones excluded."""
        client = self._client(token)
        raw = await self._paginate(
            "conversations.list",
            client.conversations_list,
            "channels",
            types="public_channel,private_channel",
            exclude_archived=True,
            limit=PAGE_LIMIT,
        )
        return [c for c in (Channel.from_api(item) for item in raw) if c is not None]

    async def list_dms(self, token: str) -> list[Channel]:
        client = self._client(token)
        raw = await self._paginate(
            "conversations.list",
            client.conversations_list,
            "channels",
            types="im",
            limit=PAGE_LIMIT,
        )
        return [c for c in (Channel.from_im(item) for item in raw) if c is not None]

    async def get_history(
        self,
        token: str,
        channel_id: str,
        limit: int | None = None,
        *,
        oldest: str | None = None,
        latest: str | None = None,
    ) -> list[Message]:
        """Return channel history oldest-first."""
        client = self._client(token)
        kwargs: dict[str, Any] = {
            "channel": channel_id,
            "limit": limit or self._config.history_limit,
        }
        if oldest is not None:
            kwargs["oldest"] = oldest
        if latest is not None:
            kwargs["latest"] = latest
        data = await self._call(
            "conversations.history",
            functools.partial(client.conversations_history, **kwargs),
        )
        names = await self.user_directory(token)
        messages = _parse_messages(data.get("messages") or [], names)
        # Slack returns newest first
        messages.reverse()
        return messages

    async def get_thread_replies(
        self, token: str, channel_id: str, thread_ts: str
    ) -> list[Message]:
        """Return the parent and its replies in the order Slack sends them."""
        client = self._client(token)
        data = await self._call(
            "conversations.replies",
            functools.partial(client.conversations_replies, channel=channel_id, ts=thread_ts),
        )
        names = await self.user_directory(token)
        return _parse_messages(data.get("messages") or [], names)

    # --- Messages ---

    async def send_message(
        self,
        token: str,
        channel_id: str,
        text: str,
        thread_ts: str | None = None,
    ) -> str:
        """Post *text* and return the new message ``ts``."""
        client = self._client(token)
        kwargs: dict[str, Any] = {"channel": channel_id, "text": text}
        if thread_ts is not None:
            kwargs["thread_ts"] = thread_ts
        data = await self._call(
            "chat.postMessage", functools.partial(client.chat_postMessage, **kwargs)
        )
        ts = data.get("ts")
        if not ts:
            raise ApiCallError("No ts in response")
        return ts

    async def send_message_to_thread(
        self, token: str, channel_id: str, text: str, thread_ts: str
    ) -> str:
        return await self.send_message(token, channel_id, text, thread_ts=thread_ts)

    async def update_message(self, token: str, channel_id: str, ts: str, text: str) -> None:
        client = self._client(token)
        await self._call(
            "chat.update",
            functools.partial(client.chat_update, channel=channel_id, ts=ts, text=text),
        )

    async def delete_message(self, token: str, channel_id: str, ts: str) -> None:
        client = self._client(token)
        await self._call(
            "chat.delete", functools.partial(client.chat_delete, channel=channel_id, ts=ts)
        )

    # --- Reactions ---

    async def add_reaction(self, token: str, channel_id: str, ts: str, name: str) -> None:
        client = self._client(token)
        await self._call(
            "reactions.add",
            functools.partial(client.reactions_add, channel=channel_id, timestamp=ts, name=name),
        )

    async def remove_reaction(self, token: str, channel_id: str, ts: str, name: str) -> None:
        client = self._client(token)
        await self._call(
            "reactions.remove",
            functools.partial(
                client.reactions_remove, channel=channel_id, timestamp=ts, name=name
            ),
        )

    # --- Users ---

    async def list_users(self, token: str) -> list[User]:
        client = self._client(token)
        raw = await self._paginate(
            "users.list", client.users_list, "members", limit=PAGE_LIMIT
        )
        return [u for u in (User.from_api(item) for item in raw) if u is not None]

    async def get_user(self, token: str, user_id: str) -> User:
        client = self._client(token)
        data = await self._call(
            "users.info", functools.partial(client.users_info, user=user_id)
        )
        raw = data.get("user")
        user = User.from_api(raw) if isinstance(raw, Mapping) else None
        if user is None:
            raise ApiCallError("No user in response")
        return user

    # --- Files ---

    async def upload_file(
        self,
        token: str,
        channel_id: str,
        file_path: str | Path,
        *,
        title: str | None = None,
        comment: str | None = None,
    ) -> str:
        """Upload a local file to *channel_id* and return the file id."""
        path = Path(file_path)
        content = await asyncio.to_thread(path.read_bytes)
        client = self._client(token)
        kwargs: dict[str, Any] = {
            "channel": channel_id,
            "content": content,
            "filename": path.name,
            "title": title or path.name,
        }
        if comment is not None:
            kwargs["initial_comment"] = comment
        data = await self._call(
            "files.upload", functools.partial(client.files_upload_v2, **kwargs)
        )
        uploaded = data.get("file")
        if not isinstance(uploaded, Mapping):
            files = data.get("files") or []
            uploaded = files[0] if files else None
        file_id = uploaded.get("id") if isinstance(uploaded, Mapping) else None
        if not file_id:
            raise ApiCallError("No file id in response")
        return file_id

    async def get_file_info(self, token: str, file_id: str) -> FileInfo:
        client = self._client(token)
        data = await self._call(
            "files.info", functools.partial(client.files_info, file=file_id)
        )
        raw = data.get("file")
        if not isinstance(raw, Mapping):
            raise ApiCallError("No file in response")
        return FileInfo.from_api(raw)

    async def download_file(self, url: str, token: str, dest_path: str | Path) -> Path:
        """Fetch a private file URL with *token* and write it to *dest_path*."""
        dest = Path(dest_path)
        timeout = httpx.Timeout(self._config.api_timeout, connect=self._config.connect_timeout)

        async def fetch() -> bytes:
            async with httpx.AsyncClient(
                timeout=timeout,
                follow_redirects=True,
                transport=self._http_transport,
                headers={"User-Agent": USER_AGENT_PREFIX},
            ) as client:
                response = await client.get(url, headers={"Authorization": f"Bearer {token}"})
                response.raise_for_status()
                return response.content

        data = await self._call("file download", fetch)
        await asyncio.to_thread(atomic_write, dest, data)
        logger.info("Downloaded %d bytes to %s", len(data), dest)
        return dest


def _parse_messages(raw: list[Any], names: Mapping[str, str]) -> list[Message]:
    messages: list[Message] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        message = Message.from_api(item, names)
        if message is not None:
            messages.append(message)
    return messages
