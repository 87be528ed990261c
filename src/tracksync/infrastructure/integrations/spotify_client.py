"""Spotify Web API client for playlist synchronization."""

import asyncio
import base64
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, cast

import httpx

from tracksync.config import SpotifySettings
from tracksync.domain.entities import (
    ExternalPlaylistRef,
    ExternalPlaylistSnapshot,
    TokenGrant,
)
from tracksync.domain.exceptions import (
    AuthenticationError,
    ExternalServiceError,
    RateLimitExceededError,
    TokenRefreshException,
)
from tracksync.domain.ports import IStreamingPlatformClient, ITokenRefresher
from tracksync.infrastructure.integrations.http_pool import HttpClientPool
from tracksync.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Spotify accepts at most 100 URIs per add/remove request
MAX_ITEMS_PER_REQUEST = 100


def track_uri(external_track_id: str) -> str:
    """Spotify URI for a track id, e.g. "spotify:track:4uLU6hMCjMI75M1A2tKUQC"."""
    return f"spotify:track:{external_track_id}"


def _parse_retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def _platform_message(response: httpx.Response) -> str:
    """Pull Spotify's error message out of either of its two error shapes."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return str(error.get("message", ""))
        if isinstance(error, str):
            return str(payload.get("error_description", error))
    return response.text[:200]


class SpotifyClient(IStreamingPlatformClient, ITokenRefresher):
    """HTTP client for Spotify playlist operations and token refresh."""

    platform_name = "spotify"

    def __init__(
        self,
        settings: SpotifySettings,
        http_pool: HttpClientPool,
        rate_limiter: RateLimiter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize Spotify client.

        Args:
            settings: Spotify configuration settings
            http_pool: Shared HTTP client pool
            rate_limiter: Self-imposed throttle; None disables client-side throttling
            sleep: Async sleep used for 429 backoff when there is no rate limiter
        """
        self.settings = settings
        self._http_pool = http_pool
        self._rate_limiter = rate_limiter
        self._sleep = sleep

    def _url(self, path_or_url: str) -> str:
        if path_or_url.startswith("http"):
            return path_or_url
        return f"{self.settings.api_base_url}{path_or_url}"

    # Hey future me - CENTRALIZED API REQUEST! Every call goes through here so 429 handling and
    # error classification live in ONE place:
    # - 429 with a short Retry-After: wait (limiter backoff, or a plain sleep without one) and
    #   retry, up to rate_limit_retries
    # - 429 with a long Retry-After, or retries exhausted: RateLimitExceededError(retry_after)
    # - 401: AuthenticationError -> the token manager refreshes once and the caller retries
    # - other non-2xx: ExternalServiceError with Spotify's raw status + message attached
    async def _api_request(
        self,
        method: str,
        path_or_url: str,
        access_token: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Make a rate-limited API request.

        Args:
            method: HTTP method (GET, POST, ...)
            path_or_url: Path below the API base URL, or an absolute "next" URL
            access_token: OAuth bearer token
            params: Query parameters
            json: JSON body
            content: Raw body (cover upload)
            headers: Extra headers

        Returns:
            Successful httpx.Response

        Raises:
            RateLimitExceededError: On 429 that we won't (or can't) sleep through
            AuthenticationError: On 401
            ExternalServiceError: On any other error status
        """
        client = await self._http_pool.get_client()
        url = self._url(path_or_url)
        request_headers = {"Authorization": f"Bearer {access_token}", **(headers or {})}
        max_retries = self.settings.rate_limit_retries

        for attempt in range(max_retries + 1):
            if self._rate_limiter is not None:
                await self._rate_limiter.acquire()
            response = await client.request(
                method,
                url,
                params=params,
                json=json,
                content=content,
                headers=request_headers,
                timeout=self.settings.request_timeout,
            )

            if response.status_code != 429:
                if self._rate_limiter is not None:
                    self._rate_limiter.reset_backoff()
                self._raise_for_status(method, url, response)
                return response

            retry_after = _parse_retry_after(response)
            too_long = (
                retry_after is not None
                and retry_after > self.settings.max_inline_retry_after
            )
            if attempt >= max_retries or too_long:
                raise RateLimitExceededError(
                    f"Spotify rate limited {method} {url} "
                    f"(Retry-After: {retry_after if retry_after is not None else 'not provided'}s)",
                    retry_after=retry_after,
                    platform_message=_platform_message(response),
                )

            logger.warning(
                "Spotify 429 on %s %s (attempt %d/%d), backing off",
                method,
                url,
                attempt + 1,
                max_retries + 1,
            )
            if self._rate_limiter is not None:
                await self._rate_limiter.handle_rate_limit_response(retry_after)
            else:
                await self._sleep(
                    retry_after
                    if retry_after is not None
                    else min(float(2**attempt), self.settings.max_inline_retry_after)
                )

        raise AssertionError("unreachable")  # pragma: no cover

    @staticmethod
    def _raise_for_status(method: str, url: str, response: httpx.Response) -> None:
        if response.is_success:
            return
        message = _platform_message(response)
        if response.status_code == 401:
            raise AuthenticationError(f"Spotify rejected the access token: {message}")
        raise ExternalServiceError(
            f"Spotify API error {response.status_code} for {method} {url}: {message}",
            status_code=response.status_code,
            platform_message=message,
        )

    # Listen up, Spotify answers a dead refresh token with 400 {"error": "invalid_grant"}. That is
    # NOT a transient failure - it means re-auth. We raise TokenRefreshException so the token
    # manager can stop using the token. When a client secret is configured we authenticate with
    # HTTP Basic (service account / confidential app); otherwise client_id goes in the form (PKCE).
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """
        Exchange a refresh token for a new access token.

        Args:
            refresh_token: Refresh token from a previous authorization

        Returns:
            TokenGrant with access token, lifetime and (if rotated) a new refresh token

        Raises:
            TokenRefreshException: If the refresh token is invalid/revoked
            RateLimitExceededError: If the token endpoint throttles us
            ExternalServiceError: For other HTTP errors
        """
        client = await self._http_pool.get_client()

        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if self.settings.has_client_credentials:
            basic = base64.b64encode(
                f"{self.settings.client_id}:{self.settings.client_secret}".encode()
            ).decode()
            headers["Authorization"] = f"Basic {basic}"
        else:
            data["client_id"] = self.settings.client_id

        response = await client.post(
            self.settings.token_url,
            data=data,
            headers=headers,
            timeout=self.settings.request_timeout,
        )

        if response.status_code == 400:
            try:
                error_code = str(response.json().get("error", ""))
            except (ValueError, AttributeError):
                error_code = ""
            raise TokenRefreshException(
                message=f"Refresh token rejected: {_platform_message(response)}",
                error_code=error_code or None,
                http_status=400,
            )
        if response.status_code in (401, 403):
            raise TokenRefreshException(
                message="Spotify denied the token refresh. Please re-authenticate.",
                error_code="access_denied",
                http_status=response.status_code,
            )
        if response.status_code == 429:
            raise RateLimitExceededError(
                "Spotify token endpoint rate limited",
                retry_after=_parse_retry_after(response),
            )
        self._raise_for_status("POST", self.settings.token_url, response)

        payload = cast(dict[str, Any], response.json())
        return TokenGrant(
            access_token=payload["access_token"],
            expires_in=int(payload.get("expires_in", 3600)),
            refresh_token=payload.get("refresh_token"),
            scope=payload.get("scope"),
        )

    async def create_playlist(
        self,
        access_token: str,
        owner_id: str | None,
        title: str,
        description: str,
        is_public: bool,
    ) -> ExternalPlaylistRef:
        """Create a playlist owned by owner_id (or the token's user when None)."""
        path = f"/users/{owner_id}/playlists" if owner_id else "/me/playlists"
        response = await self._api_request(
            "POST",
            path,
            access_token,
            json={"name": title, "description": description, "public": is_public},
        )
        payload = response.json()
        return ExternalPlaylistRef(
            external_id=payload["id"],
            external_url=(payload.get("external_urls") or {}).get("spotify"),
        )

    async def add_tracks(
        self, access_token: str, external_id: str, external_track_ids: Sequence[str]
    ) -> str | None:
        """Append up to 100 tracks in one request."""
        self._check_batch(external_track_ids)
        response = await self._api_request(
            "POST",
            f"/playlists/{external_id}/tracks",
            access_token,
            json={"uris": [track_uri(tid) for tid in external_track_ids]},
        )
        return cast(str | None, response.json().get("snapshot_id"))

    async def remove_tracks(
        self, access_token: str, external_id: str, external_track_ids: Sequence[str]
    ) -> str | None:
        """Remove every occurrence of up to 100 tracks in one request."""
        self._check_batch(external_track_ids)
        response = await self._api_request(
            "DELETE",
            f"/playlists/{external_id}/tracks",
            access_token,
            json={"tracks": [{"uri": track_uri(tid)} for tid in external_track_ids]},
        )
        return cast(str | None, response.json().get("snapshot_id"))

    async def move_items(
        self,
        access_token: str,
        external_id: str,
        range_start: int,
        insert_before: int,
        range_length: int = 1,
        snapshot_id: str | None = None,
    ) -> str | None:
        """Move a range of items using Spotify's reorder endpoint."""
        body: dict[str, Any] = {
            "range_start": range_start,
            "insert_before": insert_before,
            "range_length": range_length,
        }
        if snapshot_id:
            body["snapshot_id"] = snapshot_id
        response = await self._api_request(
            "PUT", f"/playlists/{external_id}/tracks", access_token, json=body
        )
        return cast(str | None, response.json().get("snapshot_id"))

    # Hey future me, Spotify pages playlist items 100 at a time - the first page is embedded in
    # the playlist object, the rest hangs off "next". We follow next until it's null, otherwise a
    # 250-track playlist looks like a 100-track one and the reorder "verification" lies to us.
    async def get_playlist(
        self, access_token: str, external_id: str, include_tracks: bool = True
    ) -> ExternalPlaylistSnapshot:
        """Fetch playlist metadata and, optionally, every item id."""
        params = None
        if not include_tracks:
            params = {"fields": "id,name,external_urls,images,snapshot_id,tracks.total"}
        response = await self._api_request(
            "GET", f"/playlists/{external_id}", access_token, params=params
        )
        payload = response.json()
        tracks_page = payload.get("tracks") or {}

        item_ids: list[str] = []
        if include_tracks:
            item_ids.extend(self._item_ids(tracks_page))
            next_url = tracks_page.get("next")
            while next_url:
                page = (await self._api_request("GET", next_url, access_token)).json()
                item_ids.extend(self._item_ids(page))
                next_url = page.get("next")

        return ExternalPlaylistSnapshot(
            external_id=payload.get("id", external_id),
            name=payload.get("name"),
            external_url=(payload.get("external_urls") or {}).get("spotify"),
            item_ids=tuple(item_ids),
            image_urls=tuple(
                image["url"] for image in payload.get("images") or [] if image.get("url")
            ),
            total=int(tracks_page.get("total", len(item_ids))),
            snapshot_id=payload.get("snapshot_id"),
            includes_items=include_tracks,
        )

    @staticmethod
    def _item_ids(page: dict[str, Any]) -> list[str]:
        ids: list[str] = []
        for item in page.get("items") or []:
            track = item.get("track") or {}
            if track.get("id") and not item.get("is_local"):
                ids.append(track["id"])
        return ids

    async def upload_cover_image(
        self, access_token: str, external_id: str, base64_jpeg: str
    ) -> None:
        """Upload a base64 JPEG as the playlist cover (raw base64 body, no data-URL prefix)."""
        await self._api_request(
            "PUT",
            f"/playlists/{external_id}/images",
            access_token,
            content=base64_jpeg.encode("ascii"),
            headers={"Content-Type": "image/jpeg"},
        )

    @staticmethod
    def _check_batch(external_track_ids: Sequence[str]) -> None:
        if len(external_track_ids) > MAX_ITEMS_PER_REQUEST:
            raise ValueError(
                f"At most {MAX_ITEMS_PER_REQUEST} items per request, got {len(external_track_ids)}"
            )
