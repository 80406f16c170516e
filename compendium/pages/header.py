from __future__ import annotations

import html
import logging
import time
from typing import Any, Optional
from urllib.parse import quote

from compendium.auth import AccessGate, Capability
from compendium.css.utils import load_css
from compendium.login_logic import get_user

timing_logger = logging.getLogger("uvicorn.error")

SITE_NAME = "Compendium"
NAV_LINKS: tuple[tuple[str, str, str], ...] = (
    ("wiki", "Characters", "/wiki/"),
)
_ROLE_LABELS = {
    Capability.READER: "Reader",
    Capability.EDITOR: "Editor",
    Capability.ADMIN: "Admin",
}


def _log_timing(event_name: str, start: float, **fields: object) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if fields:
        field_text = " ".join(f"{key}={value}" for key, value in fields.items())
        timing_logger.info("header.timing event=%s ms=%.2f %s", event_name, elapsed_ms, field_text)
        return
    timing_logger.info("header.timing event=%s ms=%.2f", event_name, elapsed_ms)


def _account_html(user: Optional[dict], gate: AccessGate, path: str) -> str:
    if not user:
        login_url = f"/auth/google?redirect_to={quote(path or '/wiki/', safe='/')}"
        return f'<a href="{html.escape(login_url, quote=True)}" class="hdr-signin">Sign in with Google</a>'

    name = html.escape(user.get("name") or user.get("email") or "Signed in")
    capability = gate.capability
    badge = (
        f'<span class="role-badge role-badge--{capability.value}">'
        f"{html.escape(_ROLE_LABELS.get(capability, capability.value))}</span>"
    )
    return (
        f'<div class="hdr-account"><span class="hdr-name">{name}</span>{badge}'
        '<a href="/logout" class="hdr-signout">Sign out</a></div>'
    )


def render_header(path: str, request: Any, gate: Optional[AccessGate] = None) -> str:
    """Top bar: site name, navigation and the sign-in button or the signed-in user with a role badge."""
    total_start = time.perf_counter()
    user = get_user(request)
    css = load_css("header.css")
    nav = "".join(
        f'<a href="{href}" class="hdr-link{" is-active" if (path or "").startswith(href.rstrip("/")) else ""}">'
        f"{html.escape(label)}</a>"
        for _key, label, href in NAV_LINKS
    )
    html_value = f"""<style>
{css}
</style>
<header class="hdr">
  <a href="/wiki/" class="site-logo">{SITE_NAME}</a>
  <nav class="hdr-nav">{nav}</nav>
  {_account_html(user, gate or AccessGate.anonymous(), path)}
</header>"""
    _log_timing("render_header.total", total_start, path=path or "/", has_user=bool(user))
    return html_value
