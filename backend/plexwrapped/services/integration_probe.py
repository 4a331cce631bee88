"""Probe all configured integrations on startup and report status."""

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from plexwrapped.clients.tautulli import TautulliClient
from plexwrapped.clients.tmdb import TmdbClient
from plexwrapped.services.integrations import load_ai_config, load_media_config, load_tautulli_config


async def probe_all(
    db: AsyncSession,
    timeout: float = 5.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict:
    """Check reachability of every configured service. Returns status dict."""
    results = {}
    tautulli = await load_tautulli_config(db)
    media = await load_media_config(db)
    ai = await load_ai_config(db)

    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        # Tautulli
        if tautulli is not None:
            base = TautulliClient.from_config(tautulli).url
            results["tautulli"] = await _probe(
                client, f"{base}/api/v2", params={"apikey": tautulli.api_key, "cmd": "status"},
            )
        else:
            results["tautulli"] = {"status": "not_configured"}

        # TMDB, with the same v3/v4 auth the catalog client uses
        if media is not None and media.tmdb_api_key:
            params, headers = TmdbClient(media.tmdb_api_key).auth()
            results["tmdb"] = await _probe(
                client, f"{TmdbClient.BASE_URL}/configuration", params=params, headers=headers,
            )
        else:
            results["tmdb"] = {"status": "not_configured"}

        # OMDb answers 200 for any request; a 401 means the key was rejected
        if media is not None and media.omdb_api_key:
            results["omdb"] = await _probe(
                client, "https://www.omdbapi.com/", params={"apikey": media.omdb_api_key, "i": "tt0111161"},
            )
        else:
            results["omdb"] = {"status": "not_configured"}

        # Text generation
        if ai is not None and ai.enabled and ai.api_key:
            results["ai"] = await _probe(
                client, f"{ai.base_url.rstrip('/')}/models",
                headers={"Authorization": f"Bearer {ai.api_key}"},
            )
        else:
            results["ai"] = {"status": "not_configured"}

    return results


async def _probe(
    client: httpx.AsyncClient,
    url: str,
    params: dict | None = None,
    headers: dict | None = None,
) -> dict:
    """Probe a single endpoint."""
    try:
        resp = await client.get(url, params=params, headers=headers)
        return {
            "status": "ok" if resp.status_code < 400 else "error",
            "code": resp.status_code,
        }
    except httpx.ConnectError:
        return {"status": "unreachable"}
    except Exception as e:
        return {"status": "error", "detail": str(e)[:200]}
