from __future__ import annotations

import logging

import httpx

from .constants import PLACEHOLDER_ART, SPOTIFY_LOGGER
from .http import CatalogError, CatalogTransientError, ResilientClient, RetryPolicy

MAX_TRACKS_PER_REQUEST = 100


class SpotifyCatalog:
    """Spotify Web API operations for one signed-in user.

    Every request goes through the shared ``ResilientClient``; nothing here
    talks to the API directly.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        resilient: ResilientClient,
        access_token: str,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._http = http_client
        self._resilient = resilient
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._logger = logger or SPOTIFY_LOGGER

    async def _get(self, url: str, *, params: dict | None = None, policy: RetryPolicy | None = None):
        return await self._resilient.call(
            self._http.get, url, params=params, headers=self._headers, policy=policy
        )

    async def _post(self, url: str, *, json: dict, policy: RetryPolicy | None = None):
        return await self._resilient.call(
            self._http.post, url, json=json, headers=self._headers, policy=policy
        )

    async def get_current_user(self) -> dict:
        return await self._get("/me")

    async def get_playlist(self, playlist_id: str) -> dict:
        return await self._get(f"/playlists/{playlist_id}")

    async def get_playlist_track_uris(self, playlist_id: str) -> list[str]:
        uris: list[str] = []
        url: str | None = f"/playlists/{playlist_id}/tracks"
        params: dict | None = {"limit": MAX_TRACKS_PER_REQUEST}

        while url:
            page = await self._get(url, params=params) or {}
            for item in page.get("items", []):
                track = item.get("track") if isinstance(item, dict) else None
                if not isinstance(track, dict) or item.get("is_local"):
                    continue
                uri = track.get("uri")
                if isinstance(uri, str) and uri:
                    uris.append(uri)
            # "next" is absolute and already carries the paging query.
            url = page.get("next")
            params = None

        return uris

    async def create_playlist(
        self,
        user_id: str,
        name: str,
        description: str = "",
        *,
        public: bool = False,
    ) -> dict:
        created = await self._post(
            f"/users/{user_id}/playlists",
            json={"name": name, "public": public, "description": description},
        )
        playlist_id = created.get("id") if isinstance(created, dict) else None
        if not isinstance(playlist_id, str) or not playlist_id:
            raise CatalogTransientError(
                "Spotify did not return an id for the new playlist.",
                detail=str(created)[:200],
            )
        return created

    async def add_tracks(self, playlist_id: str, uris: list[str]) -> None:
        for start in range(0, len(uris), MAX_TRACKS_PER_REQUEST):
            chunk = uris[start : start + MAX_TRACKS_PER_REQUEST]
            await self._post(f"/playlists/{playlist_id}/tracks", json={"uris": chunk})

    async def get_album_arts(self, playlist_ids: list[str], *, limit: int = 4) -> list[str]:
        arts: list[str] = []
        for playlist_id in playlist_ids:
            if len(arts) >= limit:
                break
            # AuthExpiredError is not a CatalogError and propagates.
            try:
                playlist = await self.get_playlist(playlist_id)
            except CatalogError as error:
                self._logger.warning("Playlist fetch error %s: %s", playlist_id, error)
                continue

            items = (playlist.get("tracks") or {}).get("items") or []
            for item in items[:limit]:
                images = ((item.get("track") or {}).get("album") or {}).get("images") or []
                url = images[0].get("url") if images else None
                if url and url not in arts:
                    arts.append(url)
                if len(arts) >= limit:
                    break

        while len(arts) < limit:
            arts.append(PLACEHOLDER_ART)
        return arts
