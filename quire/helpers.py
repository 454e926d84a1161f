"""
Request-scoped view helpers shared by the public theme and the admin.
"""

import hashlib
import re
from collections import defaultdict, deque
from functools import wraps
from time import time
from typing import DefaultDict

from flask import (
    Response,
    abort,
    current_app,
    redirect,
    request,
    session,
    url_for,
)
from flask_babel import get_locale, gettext
from markupsafe import Markup, escape

from .db import get_db
from .models import GuestUser, find_user

GRAVATAR_URL = "https://www.gravatar.com/avatar/"
GRAVATAR_PLACEHOLDER = "0" * 32
NEWLINE_RE = re.compile(r"\r\n|\r|\n")
MOBILE_RE = re.compile(r"iPhone|Android")

# message key → English source string (the msgid catalogues translate)
MESSAGES = {
    "home": "Home",
    "not_select": "Not selected",
    "search_results": "Search results",
    "search_results_for": "Search results for “%(query)s”",
    "no_entries": "Nothing here yet.",
    "preview": "Preview",
    "save": "Save",
    "delete": "Delete",
    "edit": "Edit",
    "draft": "Draft",
    "published": "Published",
    "drafts": "Drafts",
    "all": "All",
    "title": "Title",
    "slug": "Slug",
    "body": "Body",
    "markup": "Markup",
    "category": "Category",
    "tags": "Tags",
    "posts": "Posts",
    "pages": "Pages",
    "comments": "Comments",
    "archives": "Archives",
    "name": "Name",
    "email": "Email",
    "homepage": "Homepage",
    "password": "Password",
    "login": "Log in",
    "logout": "Log out",
    "dashboard": "Dashboard",
    "new_post": "New post",
    "new_page": "New page",
    "edit_post": "Edit post",
    "edit_page": "Edit page",
    "newer": "Newer",
    "older": "Older",
    "posted_at": "Posted",
    "submit_comment": "Post comment",
    "logged_in_successfully": "Logged in.",
    "logged_out": "Logged out.",
    "login_failed": "Wrong name or password.",
    "post_was_successfully_created": "Post was successfully created.",
    "post_was_successfully_updated": "Post was successfully updated.",
    "post_was_successfully_deleted": "Post was successfully deleted.",
    "page_was_successfully_created": "Page was successfully created.",
    "page_was_successfully_updated": "Page was successfully updated.",
    "page_was_successfully_deleted": "Page was successfully deleted.",
    "comment_was_successfully_created": "Thanks for your comment.",
    "comment_was_successfully_deleted": "Comment was deleted.",
    "title_is_required": "Title is required.",
    "body_is_required": "Body is required.",
    "name_is_required": "Name is required.",
    "slug_is_invalid": "Slug may only contain letters, digits, “_” and “-”.",
    "slug_is_reserved": "That slug is reserved.",
    "slug_is_already_taken": "That slug is already taken.",
    "markup_is_invalid": "Unknown markup.",
    "category_does_not_exist": "That category does not exist.",
    "page_not_found": "Page not found",
    "internal_server_error": "Internal Server Error",
}


###############################################################################
# Escaping
###############################################################################
def h(text) -> Markup:
    return escape("" if text is None else text)


def hbr(text) -> Markup:
    """h + newline → <br />"""
    return Markup(NEWLINE_RE.sub("<br />\n", str(h(text))))


###############################################################################
# Request
###############################################################################
def base_url() -> str:
    default_port = 80 if request.scheme == "http" else 443
    host = request.host
    # request.host keeps the brackets of an IPv6 literal
    if host.endswith(f":{default_port}"):
        host = host[: -len(f":{default_port}")]
    return f"{request.scheme}://{host}"


def request_path() -> str:
    """`/foo/bar?buz=aaa` (no dangling `?` when there is no query)."""
    path = request.full_path
    return path[:-1] if path.endswith("?") else path


def mobile() -> bool:
    return bool(MOBILE_RE.search(request.user_agent.string or ""))


###############################################################################
# Login state
###############################################################################
def logged_in() -> bool:
    return bool(session.get("user"))


def current_user():
    user = find_user(session["user"], db=get_db()) if logged_in() else None
    return user or GuestUser()


def login_required() -> bool:
    """
    Let real users through; send guests to the login form and remember
    where they were heading.
    """
    if not current_user().is_guest:
        return True
    session["return_to"] = request_path()
    abort(redirect(url_for("admin.login")))


def safe_return_to(path: str | None) -> str | None:
    if path and path.startswith("/") and not path.startswith("//"):
        return path
    return None


def rate_limit(max_requests: int, window: int = 60):
    hits: DefaultDict[str, deque] = defaultdict(deque)

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_app.config.get("RATELIMIT_ENABLED", True):
                return view(*args, **kwargs)

            now = time()
            # left-most entry after ProxyFix = real client
            ip = (
                request.access_route[0] if request.access_route else request.remote_addr
            ) or "unknown"

            dq = hits[ip]
            while dq and now - dq[0] > window:
                dq.popleft()

            if len(dq) >= max_requests:
                retry_after = int(window - (now - dq[0]))
                return Response(
                    "Too many requests – try again later.",
                    status=429,
                    headers={"Retry-After": str(retry_after)},
                )

            dq.append(now)
            return view(*args, **kwargs)

        return wrapped

    return decorator


###############################################################################
# Navigation
###############################################################################
def bread_crumb(crumbs) -> Markup:
    """
    `[{name, link}, …]` → `<ol>`; every crumb links except the last one.
    """
    if not crumbs:
        return Markup("")
    html = Markup("<ol>")
    for crumb in crumbs[:-1]:
        html += Markup('<li><a href="{}">{}</a></li>').format(
            crumb["link"], crumb["name"]
        )
    return html + Markup("<li>{}</li></ol>").format(crumbs[-1]["name"])


def months(*, db) -> list[dict]:
    """
    Published posts per month, newest month first:
    `[{"year": "2024", "month": "05", "count": 3}, …]`
    """
    rows = db.execute(
        """
        SELECT substr(created_at,1,7) AS ym,
               COUNT(*)               AS cnt
          FROM entry
         WHERE type='post' AND draft=0
      GROUP BY ym
        """
    ).fetchall()

    out = []
    for r in rows:
        year, month = r["ym"].split("-")
        out.append({"year": year, "month": month, "count": r["cnt"]})
    out.sort(key=lambda m: (m["year"], m["month"]), reverse=True)
    return out


###############################################################################
# Avatars
###############################################################################
def gravatar_image_url(email: str | None = None, size: int | None = None) -> str:
    """
    Gravatar profile image for *email*.

    Without an address the all-zero hash is used, which Gravatar answers
    with its default image. *size* is the edge length in pixels.
    """
    if email:
        digest = hashlib.md5(email.strip().lower().encode("utf-8")).hexdigest()
    else:
        digest = GRAVATAR_PLACEHOLDER
    url = GRAVATAR_URL + digest
    return f"{url}?size={size}" if size else url


###############################################################################
# i18n
###############################################################################
def translate(key: str, **variables) -> str:
    return gettext(MESSAGES.get(key, key), **variables)


class TranslateProxy:
    """Answers the old `t().home` lookups, logging each one."""

    def __init__(self, logger):
        self._logger = logger

    def __getattr__(self, name):
        if name.startswith("__"):
            raise AttributeError(name)
        self._logger.warning(
            "\"t().%s\" translate style is obsolete. use \"t('%s')\".", name, name
        )
        return translate(name)


def translate_compatibly(*args, **variables):
    if not args:
        return TranslateProxy(current_app.logger)
    return translate(*args, **variables)


t = translate_compatibly


def locale() -> str:
    return str(get_locale() or current_app.config.get("BABEL_DEFAULT_LOCALE", "en"))


###############################################################################
# <body> classes
###############################################################################
def slugs(theme_types, entry=None, category=None) -> list[str]:
    out = list(theme_types or ())
    if entry and entry.get("slug"):
        out.append(entry["slug"])
    if category and category.get("slug"):
        out.append(category["slug"])
    return out


def body_attrs(theme_types, entry=None, category=None) -> dict:
    return {"class": " ".join(slugs(theme_types, entry, category))}
