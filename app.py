# ---- Resolve & inject ALL secrets BEFORE importing modules that read env ----
from compendium.secrets import get_secret

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import RedirectResponse, Response
from starlette.concurrency import run_in_threadpool
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
import logging
import mimetypes


def _install_proxy_headers(app: FastAPI) -> None:
    """Attach a proxy-aware middleware so OAuth callbacks see the public scheme and host."""

    try:
        from starlette.middleware.proxy_headers import ProxyHeadersMiddleware as _Proxy

        app.add_middleware(_Proxy)
        return
    except ImportError:
        pass

    from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware as _Proxy

    app.add_middleware(_Proxy, trusted_hosts="*")


from compendium.login_logic import add_login_routes, register_oauth_provider
from compendium.mount_gradio_app import mount_gradio_app
from compendium.pages.character.app_character import make_character_app
from compendium.pages.roster.app_roster import make_roster_app
from compendium.services import build_services
from compendium.store import bootstrap_schema

logger = logging.getLogger(__name__)

app = FastAPI()
_install_proxy_headers(app)
services = build_services()

MEDIA_CACHE_CONTROL_REVALIDATE = "public, max-age=0, must-revalidate"
MEDIA_CACHE_CONTROL_VERSIONED = "public, max-age=31536000, immutable"
# portrait URLs carry `?t=<ms>` after an upload; `v` is accepted for hand-written links
MEDIA_VERSION_PARAMS = ("t", "v")


def _quote_etag(raw_etag: str | None) -> str:
    value = str(raw_etag or "").strip()
    if value.startswith("W/"):
        value = value[2:].strip()
    value = value.strip('"')
    if not value:
        return ""
    return f'"{value}"'


def _etag_matches(header_value: str | None, current_etag: str) -> bool:
    if not header_value or not current_etag:
        return False
    current = current_etag.removeprefix("W/").strip().strip('"')
    for token in str(header_value).split(","):
        candidate = token.strip()
        if candidate == "*":
            return True
        if candidate and candidate.removeprefix("W/").strip().strip('"') == current:
            return True
    return False


def _parse_http_date(header_value: str | None) -> datetime | None:
    if not header_value:
        return None
    try:
        parsed = parsedate_to_datetime(header_value)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _is_not_modified(request: Request, *, etag: str, updated_at: datetime | None) -> bool:
    if_none_match = request.headers.get("if-none-match")
    if if_none_match:
        return _etag_matches(if_none_match, etag)
    if_modified_since = _parse_http_date(request.headers.get("if-modified-since"))
    if if_modified_since is None or updated_at is None:
        return False
    return updated_at.astimezone(timezone.utc).replace(microsecond=0) <= if_modified_since


@app.on_event("startup")
async def _bootstrap_schema() -> None:
    await run_in_threadpool(bootstrap_schema)


# OAuth client config (now guaranteed in env; also available via get_secret)
register_oauth_provider(
    name="google",
    icon="google",
    server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
    client_id=get_secret("GOOGLE_CLIENT_ID"),
    client_secret=get_secret("GOOGLE_CLIENT_SECRET"),
    client_kwargs={
        "scope": "openid email profile",
        "timeout": 30,
    },
)
add_login_routes(app, store=services.store, events=services.events, home_route="/wiki")


@app.get("/media/{blob_path:path}")
async def media_blob(blob_path: str, request: Request) -> Response:
    normalized = (blob_path or "").strip().lstrip("/")
    if not normalized:
        raise HTTPException(status_code=404)
    storage = services.storage

    # versioned URLs change whenever the portrait is replaced, so they can be cached forever
    if any(str(request.query_params.get(name, "")).strip() for name in MEDIA_VERSION_PARAMS):
        try:
            payload = await run_in_threadpool(storage.download_bytes, normalized)
        except FileNotFoundError:
            raise HTTPException(status_code=404)
        except Exception:
            logger.exception("Media fetch failed for %s", normalized)
            raise HTTPException(status_code=500, detail="Media fetch failed")
        return Response(
            content=payload,
            media_type=mimetypes.guess_type(normalized)[0] or "application/octet-stream",
            headers={"Cache-Control": MEDIA_CACHE_CONTROL_VERSIONED},
        )

    try:
        content_type, blob_etag, blob_updated_at = await run_in_threadpool(storage.blob_http_metadata, normalized)
    except FileNotFoundError:
        raise HTTPException(status_code=404)
    except Exception:
        logger.exception("Media metadata failed for %s", normalized)
        raise HTTPException(status_code=500, detail="Media fetch failed")

    etag = _quote_etag(blob_etag)
    headers = {"Cache-Control": MEDIA_CACHE_CONTROL_REVALIDATE}
    if etag:
        headers["ETag"] = etag
    if blob_updated_at is not None:
        headers["Last-Modified"] = format_datetime(
            blob_updated_at.astimezone(timezone.utc).replace(microsecond=0), usegmt=True
        )

    if _is_not_modified(request, etag=etag, updated_at=blob_updated_at):
        return Response(status_code=304, headers=headers)

    try:
        payload = await run_in_threadpool(storage.download_bytes, normalized)
    except FileNotFoundError:
        raise HTTPException(status_code=404)
    except Exception:
        logger.exception("Media fetch failed for %s", normalized)
        raise HTTPException(status_code=500, detail="Media fetch failed")

    return Response(content=payload, media_type=content_type or "application/octet-stream", headers=headers)


@app.get("/")
async def root_redirect() -> RedirectResponse:
    return RedirectResponse(url="/wiki/")


# --- Pages
roster_app = make_roster_app(services)
character_app = make_character_app(services)

# Optional: session secret via secret manager (fallback default set in bootstrap)
session_secret = get_secret("SESSION_SECRET", default="dev-session-secret")
mount_gradio_app(app, roster_app, "/wiki", secret_key=session_secret)
mount_gradio_app(app, character_app, "/character", secret_key=session_secret)
