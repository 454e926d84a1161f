#!/usr/bin/env python3
"""
quire – a small blog: public theme, admin and CLI on one Flask app.
"""

import os
import secrets
from datetime import date
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import click
from flask import (
    Flask,
    abort,
    flash,
    has_request_context,
    redirect,
    render_template_string,
    request,
    session,
)
from flask_babel import Babel
from werkzeug.middleware.proxy_fix import ProxyFix

from . import admin
from .db import (
    PER_PAGE_DEFAULT,
    close_db,
    get_db,
    get_setting,
    init_db,
    page_arg,
    setting_int,
)
from .helpers import (
    base_url,
    body_attrs,
    bread_crumb,
    current_user,
    gravatar_image_url,
    h,
    hbr,
    locale,
    logged_in,
    mobile,
    months,
    request_path,
    t,
)
from .models import (
    comments_for,
    create_category,
    create_comment,
    create_field_name,
    create_user,
    find_by_id_or_slug,
    find_category_by_slug,
    published_posts,
)
from .theme import (
    ThemeTypes,
    body_filter,
    comment_form,
    page_url,
    render_detect,
    setup_and_render_entry,
    ts_filter,
    url_filter,
    wrap,
)

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent
DB_FILE = Path(os.environ.get("QUIRE_DATABASE", ROOT / "blog.sqlite3"))

SECRET_FILE = ROOT / ".secret_key"
SECRET_KEY = os.environ.get("QUIRE_SECRET_KEY")
if not SECRET_KEY:
    SECRET_KEY = (
        SECRET_FILE.read_text().strip()
        if SECRET_FILE.exists()
        else secrets.token_hex(32)
    )
    SECRET_FILE.write_text(SECRET_KEY)

LANGUAGES = [
    lang.strip()
    for lang in os.environ.get("QUIRE_LANGUAGES", "en").split(",")
    if lang.strip()
]

try:
    __version__ = version("quire")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


################################################################################
# App + template filters
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(SECRET_KEY=SECRET_KEY, DATABASE=str(DB_FILE))
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",  # blocks most CSRF on simple links
    SESSION_COOKIE_HTTPONLY=True,  # mitigate XSS → cookie theft
    SESSION_COOKIE_SECURE=os.environ.get("QUIRE_SECURE_COOKIES", "1") != "0",
    LANGUAGES=LANGUAGES,
    BABEL_DEFAULT_LOCALE=LANGUAGES[0] if LANGUAGES else "en",
    THEME=os.environ.get("QUIRE_THEME", "default"),
    RATELIMIT_ENABLED=True,
)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)
app.teardown_appcontext(close_db)


def select_locale():
    if not has_request_context():
        return None
    configured = get_setting("locale")
    if configured in app.config["LANGUAGES"]:
        return configured
    return request.accept_languages.best_match(app.config["LANGUAGES"])


babel = Babel(app, locale_selector=select_locale)

app.add_template_filter(ts_filter, "ts")
app.add_template_filter(url_filter, "url")
app.add_template_filter(body_filter, "body")


def _csrf_token() -> str:
    """One token per session (rotates when the cookie does)."""
    return session.get("csrf", "")


# Expose helpers to templates
app.jinja_env.globals.update(
    h=h,
    hbr=hbr,
    t=t,
    locale=locale,
    base_url=base_url,
    request_path=request_path,
    bread_crumb=bread_crumb,
    gravatar_image_url=gravatar_image_url,
    logged_in=logged_in,
    current_user=current_user,
    body_attrs=body_attrs,
    comment_form=comment_form,
    mobile=mobile,
    page_url=page_url,
    get_setting=get_setting,
    csrf_token=_csrf_token,
    version=__version__,
)
app.jinja_env.globals["months"] = lambda: months(db=get_db())

app.register_blueprint(admin.bp)


SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}


@app.before_request
def csrf_protect():
    # ➊ read-only verbs ⇒ always allowed
    if request.method in SAFE_METHODS:
        return

    # ➋ no session yet ⇒ allow (covers the login POST and guest comments)
    if not session.get("user"):
        return

    # ➌ for authenticated users we REQUIRE a valid token
    token = session.get("csrf", "")
    sent = request.form.get("csrf") or request.headers.get("X-CSRFToken", "")
    if not token or not secrets.compare_digest(token, sent):
        abort(403)


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
    )
    return resp


###############################################################################
# CLI – admin account, categories, custom fields
###############################################################################
@app.cli.command("init")
@click.option("--name", prompt=True, help="Admin user name")
@click.option("--email", prompt=True, default="", help="Used for the avatar")
@click.option(
    "--password", prompt=True, hide_input=True, confirmation_prompt=True
)
def cli_init(name: str, email: str, password: str):
    """Initialise DB *and* create the first admin account."""
    init_db()  # no-op if already there
    create_user(
        name=name.strip(), email=email.strip() or None, password=password, db=get_db()
    )
    click.secho(f"\n✅  Admin {name.strip()!r} created.", fg="green")
    click.echo("Log in at /admin/login")


@app.cli.command("category")
@click.option("--title", required=True)
@click.option("--slug", required=True)
@click.option("--description", default=None)
@click.option("--parent", "parent_slug", default=None, help="Slug of the parent")
def cli_category(title: str, slug: str, description, parent_slug):
    """Add a category."""
    db = get_db()
    parent_id = None
    if parent_slug:
        parent = find_category_by_slug(parent_slug, db=db)
        if parent is None:
            raise click.BadParameter(f"no category {parent_slug!r}", param_hint="--parent")
        parent_id = parent["id"]
    try:
        create_category(
            title=title, slug=slug, description=description, parent_id=parent_id, db=db
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--slug") from exc
    click.secho(f"Category {title!r} → /category/{slug}", fg="green")


@app.cli.command("field")
@click.option("--name", required=True)
def cli_field(name: str):
    """Add a custom field every entry form will offer."""
    create_field_name(name.strip(), db=get_db())
    click.secho(f"Field {name.strip()!r} added.", fg="green")


###############################################################################
# Index + Listings
###############################################################################
def _home_crumb() -> dict:
    return {"name": t("home"), "link": "/"}


def _render_entries(theme: ThemeTypes, *names, where="", params=(), **context):
    page = page_arg(request.args.get("page"))
    entries, pages = published_posts(
        db=get_db(),
        page=page,
        per_page=setting_int("per_page", PER_PAGE_DEFAULT),
        where=where,
        params=params,
    )
    return render_detect(
        *names,
        "entries",
        theme=theme,
        entries=entries,
        page=page,
        pages=pages,
        **context,
    )


@app.route("/")
def index():
    return _render_entries(
        ThemeTypes("index", "entries"),
        "index",
        title=None,
        bread_crumbs=[_home_crumb()],
    )


@app.route("/search")
def search():
    query = request.args.get("query", "").strip()
    like = f"%{query}%"
    return _render_entries(
        ThemeTypes("search", "entries"),
        "search",
        where="title LIKE ? OR body LIKE ?",
        params=(like, like),
        title=t("search_results"),
        query=query,
        bread_crumbs=[_home_crumb(), {"name": t("search_results"), "link": ""}],
    )


@app.route("/category/<slug>")
def category(slug):
    cat = find_category_by_slug(slug, db=get_db())
    if cat is None:
        abort(404)
    return _render_entries(
        ThemeTypes("category", "entries"),
        "category",
        where="category_id=?",
        params=(cat["id"],),
        title=cat["title"],
        category=cat,
        bread_crumbs=[_home_crumb(), {"name": cat["title"], "link": cat["link"]}],
    )


@app.route("/tags/<path:name>")
def tag(name):
    row = get_db().execute("SELECT id FROM tag WHERE name=?", (name,)).fetchone()
    if row is None:
        abort(404)
    return _render_entries(
        ThemeTypes("tag", "entries"),
        "tag",
        where="id IN (SELECT entry_id FROM entry_tag WHERE tag_id=?)",
        params=(row["id"],),
        title=f"#{name}",
        tag=name,
        bread_crumbs=[_home_crumb(), {"name": f"#{name}", "link": f"/tags/{name}"}],
    )


def _archive(kind: str, prefix: str):
    return _render_entries(
        ThemeTypes(kind, "entries"),
        kind,
        where="substr(created_at,1,?)=?",
        params=(len(prefix), prefix),
        title=prefix,
        bread_crumbs=[_home_crumb(), {"name": prefix, "link": f"/{prefix.replace('-', '/')}"}],
    )


@app.route("/<int(fixed_digits=4):year>", methods=["GET", "POST"])
def yearly(year):
    # entries without a slug live at /<id>, which wins over the archive
    if find_by_id_or_slug(str(year), db=get_db(), include_drafts=logged_in()):
        return entry(str(year))
    if request.method == "POST":
        abort(405)
    return _archive("yearly", f"{year:04d}")


@app.route("/<int(fixed_digits=4):year>/<int(fixed_digits=2):month>")
def monthly(year, month):
    if not 1 <= month <= 12:
        abort(404)
    return _archive("monthly", f"{year:04d}-{month:02d}")


@app.route(
    "/<int(fixed_digits=4):year>/<int(fixed_digits=2):month>/<int(fixed_digits=2):day>"
)
def daily(year, month, day):
    try:
        day_ = date(year, month, day)
    except ValueError:
        abort(404)
    return _archive("daily", day_.isoformat())


###############################################################################
# Entries (Post, Page)
###############################################################################
@app.route("/<id_or_slug>", methods=["GET", "POST"])
def entry(id_or_slug):
    db = get_db()
    e = find_by_id_or_slug(id_or_slug, db=db, include_drafts=logged_in())
    if e is None:
        abort(404)

    comment = None
    if request.method == "POST":
        if e["type"] != "post":
            abort(405)
        comment, errors = create_comment(e["id"], request.form, db=db)
        if not errors:
            flash(t("comment_was_successfully_created"))
            return redirect(f"{e['link']}#comments")
        for err in errors:
            flash(t(err))

    return setup_and_render_entry(
        e,
        theme_types=ThemeTypes(),
        comments=comments_for(e["id"], db=db),
        comment=comment,
    )


###############################################################################
# Error pages
###############################################################################
@app.errorhandler(404)
def not_found(exc):
    """Site-wide “Not Found” page."""
    return render_template_string(TEMPL_404, title=t("page_not_found")), 404


@app.errorhandler(500)
def internal_error(exc):
    """
    Generic 500 page for production.
    • In debug mode the Werkzeug debugger still shows the traceback,
      because Flask bypasses this handler.
    """
    app.logger.exception(
        "Unhandled error on %s: %r",
        request.path,
        getattr(exc, "original_exception", exc),
    )
    return render_template_string(TEMPL_500, title=t("internal_server_error")), 500


TEMPL_404 = wrap("""
{% block body %}
  <h2 style="margin-top:0">{{ t('page_not_found') }}</h2>
  <p>The URL you asked for doesn’t exist.
     <a href="{{ url_for('index') }}">Back to the front page</a>
     or use the search box above.</p>
{% endblock %}
""")

TEMPL_500 = wrap("""
{% block body %}
  <h2 style="margin-top:0">{{ t('internal_server_error') }}</h2>
  <p>Our fault, not yours. Please try again in a minute.</p>
{% endblock %}
""")


###############################################################################
# main
###############################################################################
if __name__ == "__main__":
    app.run(debug=True)
