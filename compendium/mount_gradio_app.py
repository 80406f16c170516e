# compendium/mount_gradio_app.py
import logging

import gradio as gr
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse

from compendium.secrets import get_secret

logger = logging.getLogger(__name__)


def add_session_middleware(app, secret_key: str | None = None) -> None:
    """Install the cookie session once, however many Blocks get mounted."""
    if getattr(app.state, "compendium_sessions_installed", False):
        return
    secret = secret_key or get_secret("SESSION_SECRET", default="dev-session-secret")
    app.add_middleware(SessionMiddleware, secret_key=secret)
    app.state.compendium_sessions_installed = True


def add_trailing_slash_redirect(app, app_route: str) -> None:
    """Gradio serves a mounted Blocks under `route/`; send the bare route there, keeping the query."""
    route_no_slash = "/" + (app_route or "").strip("/")
    if route_no_slash == "/":
        return

    @app.middleware("http")
    async def redirect_bare_route(request: Request, call_next):
        if request.url.path == route_no_slash:
            query = request.url.query
            target = f"{route_no_slash}/?{query}" if query else f"{route_no_slash}/"
            return RedirectResponse(url=target, status_code=307)
        return await call_next(request)


def mount_gradio_app(app, blocks: gr.Blocks, path: str, *, secret_key: str | None = None, **kwargs):
    add_trailing_slash_redirect(app, path)
    add_session_middleware(app, secret_key)
    logger.info("Mounting Gradio page at %s", path)
    return gr.mount_gradio_app(app, blocks, path, **kwargs)
