"""
Admin: login plus one create/edit/update/delete workflow shared by every
entry type.
"""

import secrets

from flask import (
    Blueprint,
    abort,
    current_app,
    flash,
    redirect,
    render_template_string,
    request,
    session,
    url_for,
)

from .db import ADMIN_PER_PAGE_DEFAULT, get_db, get_setting, page_arg, setting_int
from .helpers import (
    current_user,
    login_required,
    rate_limit,
    safe_return_to,
    t,
)
from .models import (
    ENTRY_TYPES,
    MARKUPS,
    all_categories,
    all_comments,
    authenticate,
    blank_entry,
    create_entry,
    delete_comment,
    destroy_entry,
    entry_attrs,
    field_names,
    find_entry,
    list_entries,
    pluralize,
    update_entry,
)
from .theme import render_preview

bp = Blueprint("admin", __name__, url_prefix="/admin")

# /admin/posts, /admin/pages …
TYPES = f"any({','.join(pluralize(name) for name in ENTRY_TYPES)})"


def _entry_type(plural: str) -> str:
    return plural[: -len("s")]


@bp.before_request
def require_login():
    if request.endpoint == "admin.login":
        return
    login_required()


###############################################################################
# Login
###############################################################################
@bp.route("/login", methods=["GET", "POST"])
@rate_limit(max_requests=5, window=60)
def login():
    if request.method == "POST":
        user = authenticate(
            request.form.get("name", "").strip(),
            request.form.get("password", ""),
            db=get_db(),
        )
        if user:
            return_to = safe_return_to(session.get("return_to"))
            session.clear()
            session.permanent = True
            session["user"] = user.id
            session["csrf"] = secrets.token_hex(16)
            current_app.logger.info("%s logged in", user.name)
            flash(t("logged_in_successfully"))
            return redirect(return_to or url_for("admin.dashboard"))

        current_app.logger.warning("failed login for %r", request.form.get("name"))
        flash(t("login_failed"))

    return render_template_string(TEMPL_LOGIN, title=t("login"))


@bp.route("/logout")
def logout():
    session.clear()
    flash(t("logged_out"))
    return redirect(url_for("index"))


@bp.route("/")
def dashboard():
    db = get_db()
    counts = {
        row["type"]: {"total": row["total"], "drafts": row["drafts"]}
        for row in db.execute(
            "SELECT type, COUNT(*) AS total, SUM(draft) AS drafts "
            "FROM entry GROUP BY type"
        )
    }
    comments = db.execute("SELECT COUNT(*) FROM comment").fetchone()[0]
    return render_template_string(
        TEMPL_DASHBOARD,
        title=t("dashboard"),
        counts=counts,
        comments=comments,
        entry_types=ENTRY_TYPES,
    )


###############################################################################
# Entry workflow
###############################################################################
def category_choices(*, db) -> list[tuple]:
    return [(None, t("not_select"))] + [
        (c["id"], c["title"]) for c in all_categories(db=db)
    ]


def render_entry_form(template: str, name: str, entry: dict, errors=()):
    db = get_db()
    return render_template_string(
        template,
        title=t(f"{'edit' if entry.get('id') else 'new'}_{name}"),
        name=name,
        entry=entry,
        errors=errors,
        categories=category_choices(db=db),
        field_names=field_names(db=db),
        markups=MARKUPS,
    )


def redirect_after_edit(entry: dict):
    name = pluralize(entry["type"])
    if entry["draft"]:
        return redirect(f"/admin/{name}?draft=true")
    return redirect(f"/admin/{name}/{entry['id']}/edit")


def get_admin_entries(name: str):
    db = get_db()
    drafts_only = request.args.get("draft") == "true"
    page = page_arg(request.args.get("page"))
    entries, pages = list_entries(
        name,
        drafts_only=drafts_only,
        page=page,
        per_page=setting_int("admin_per_page", ADMIN_PER_PAGE_DEFAULT),
        db=db,
    )
    return render_template_string(
        TEMPL_ENTRIES,
        title=t(pluralize(name)),
        name=name,
        entries=entries,
        drafts_only=drafts_only,
        page=page,
        pages=pages,
    )


def get_admin_entry_new(name: str):
    entry = blank_entry(name, markup=get_setting("default_markup"))
    return render_entry_form(TEMPL_NEW, name, entry)


def _load_entry(name: str, entry_id: int) -> dict:
    entry = find_entry(name, entry_id, db=get_db())
    if entry is None:
        abort(404)
    return entry


def get_admin_entry_edit(name: str, entry_id: int):
    return render_entry_form(TEMPL_EDIT, name, _load_entry(name, entry_id))


def post_admin_entry(name: str):
    db = get_db()
    base = blank_entry(name, markup=get_setting("default_markup"))
    field_ids = [r["id"] for r in field_names(db=db)]
    attrs = entry_attrs(request.form, base=base, field_ids=field_ids)

    if request.form.get("preview"):
        return render_preview(attrs)

    entry_id, errors = create_entry(
        name, attrs, user_id=current_user().id, db=db
    )
    if errors:
        for err in errors:
            flash(t(err))
        return render_entry_form(TEMPL_NEW, name, attrs, errors)

    entry = find_entry(name, entry_id, db=db)
    current_app.logger.info("created %s %s", name, entry_id)
    flash(t(f"{name}_was_successfully_created"))
    return redirect_after_edit(entry)


def put_admin_entry(name: str, entry_id: int):
    db = get_db()
    entry = _load_entry(name, entry_id)
    field_ids = [r["id"] for r in field_names(db=db)]
    attrs = entry_attrs(request.form, base=entry, field_ids=field_ids)

    if request.form.get("preview"):
        return render_preview(attrs)

    errors = update_entry(
        entry, attrs, tag_collection=request.form.get("tag_collection"), db=db
    )
    if errors:
        for err in errors:
            flash(t(err))
        return render_entry_form(TEMPL_EDIT, name, attrs, errors)

    current_app.logger.info("updated %s %s", name, entry_id)
    flash(t(f"{name}_was_successfully_updated"))
    return redirect_after_edit(entry)


def delete_admin_entry(name: str, entry_id: int):
    entry = _load_entry(name, entry_id)
    destroy_entry(entry, db=get_db())
    current_app.logger.info("deleted %s %s", name, entry_id)
    flash(t(f"{name}_was_successfully_deleted"))
    if entry["draft"]:
        return redirect(f"/admin/{pluralize(name)}?draft=true")
    return redirect(f"/admin/{pluralize(name)}")


@bp.route(f"/<{TYPES}:plural>")
def entries(plural):
    return get_admin_entries(_entry_type(plural))


@bp.route(f"/<{TYPES}:plural>/new")
def new_entry(plural):
    return get_admin_entry_new(_entry_type(plural))


@bp.route(f"/<{TYPES}:plural>", methods=["POST"])
def create(plural):
    return post_admin_entry(_entry_type(plural))


@bp.route(f"/<{TYPES}:plural>/<int:entry_id>/edit")
def edit(plural, entry_id):
    return get_admin_entry_edit(_entry_type(plural), entry_id)


@bp.route(f"/<{TYPES}:plural>/<int:entry_id>", methods=["PUT", "POST"])
def update(plural, entry_id):
    return put_admin_entry(_entry_type(plural), entry_id)


@bp.route(f"/<{TYPES}:plural>/<int:entry_id>", methods=["DELETE"])
@bp.route(f"/<{TYPES}:plural>/<int:entry_id>/delete", methods=["POST"])
def delete(plural, entry_id):
    return delete_admin_entry(_entry_type(plural), entry_id)


###############################################################################
# Comments
###############################################################################
@bp.route("/comments")
def comments():
    page = page_arg(request.args.get("page"))
    rows, pages = all_comments(
        db=get_db(),
        page=page,
        per_page=setting_int("admin_per_page", ADMIN_PER_PAGE_DEFAULT),
    )
    return render_template_string(
        TEMPL_COMMENTS, title=t("comments"), comments=rows, page=page, pages=pages
    )


@bp.route("/comments/<int:comment_id>/delete", methods=["POST"])
def remove_comment(comment_id):
    if not delete_comment(comment_id, db=get_db()):
        abort(404)
    flash(t("comment_was_successfully_deleted"))
    return redirect(url_for("admin.comments"))


###############################################################################
# Templates
###############################################################################
def admin_wrap(body: str) -> str:
    return TEMPL_ADMIN_PROLOG + body + TEMPL_ADMIN_EPILOG


TEMPL_ADMIN_PROLOG = """
<!doctype html>
<html lang="{{ locale() }}">
<title>{{ title }} – {{ get_setting('site_name') }} admin</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta charset="utf-8">
<style>
body{font-family:-apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,Arial,sans-serif;max-width:60em;margin:auto;padding:13px;color:#222}
nav.admin{display:flex;gap:1rem;border-bottom:1px solid #ccc;padding-bottom:.5rem;margin-bottom:1rem}
nav.admin .spacer{flex:1}
.flashes{background:#eef5e9;border-left:4px solid #7a5;padding:.6rem 1rem .6rem 2rem}
.flashes.errors{background:#fbeaea;border-color:#c33}
table{width:100%;border-collapse:collapse}
td,th{padding:.4rem;border-bottom:1px solid #eee;text-align:left}
label{display:block;font-weight:600;margin-top:.8rem}
input[type=text],select,textarea{width:100%;font:inherit;padding:.3rem .5rem;box-sizing:border-box}
.draft{color:#a60;font-size:.8em;text-transform:uppercase}
</style>
<body>
{% if logged_in() %}
<nav class="admin">
  <a href="{{ url_for('admin.dashboard') }}">{{ t('dashboard') }}</a>
  <a href="/admin/posts">{{ t('posts') }}</a>
  <a href="/admin/pages">{{ t('pages') }}</a>
  <a href="{{ url_for('admin.comments') }}">{{ t('comments') }}</a>
  <span class="spacer"></span>
  <img src="{{ gravatar_image_url(current_user().email, 20) }}" alt="" width="20" height="20">
  {{ current_user().name }}
  <a href="{{ url_for('index') }}">{{ get_setting('site_name') }}</a>
  <a href="{{ url_for('admin.logout') }}">{{ t('logout') }}</a>
</nav>
{% endif %}
{% with messages = get_flashed_messages() %}
  {% if messages %}
  <ul class="flashes{% if errors %} errors{% endif %}">{% for m in messages %}<li>{{ m }}</li>{% endfor %}</ul>
  {% endif %}
{% endwith %}
"""

TEMPL_ADMIN_EPILOG = """
</body>
</html>
"""

TEMPL_LOGIN = admin_wrap("""
{% block body %}
<h2>{{ t('login') }}</h2>
<form method="post">
  <label for="name">{{ t('name') }}</label>
  <input type="text" id="name" name="name" autocomplete="username">
  <label for="password">{{ t('password') }}</label>
  <input type="password" id="password" name="password" autocomplete="current-password">
  <p><button>{{ t('login') }}</button></p>
</form>
{% endblock %}
""")

TEMPL_DASHBOARD = admin_wrap("""
{% block body %}
<h2>{{ t('dashboard') }}</h2>
<table>
  {% for name in entry_types %}
  {% set c = counts.get(name, {'total': 0, 'drafts': 0}) %}
  <tr>
    <th><a href="/admin/{{ name }}s">{{ t(name ~ 's') }}</a></th>
    <td>{{ c['total'] }}</td>
    <td><a href="/admin/{{ name }}s?draft=true">{{ t('drafts') }}: {{ c['drafts'] or 0 }}</a></td>
    <td><a href="/admin/{{ name }}s/new">{{ t('new_' ~ name) }}</a></td>
  </tr>
  {% endfor %}
  <tr>
    <th><a href="{{ url_for('admin.comments') }}">{{ t('comments') }}</a></th>
    <td colspan="3">{{ comments }}</td>
  </tr>
</table>
{% endblock %}
""")

TEMPL_ENTRIES = admin_wrap("""
{% block body %}
<h2>{{ title }}</h2>
<p>
  <a href="/admin/{{ name }}s/new">{{ t('new_' ~ name) }}</a> ·
  {% if drafts_only %}
    <a href="/admin/{{ name }}s">{{ t('all') }}</a> · <strong>{{ t('drafts') }}</strong>
  {% else %}
    <strong>{{ t('all') }}</strong> · <a href="/admin/{{ name }}s?draft=true">{{ t('drafts') }}</a>
  {% endif %}
</p>
<table>
  {% for e in entries %}
  <tr>
    <td>
      <a href="/admin/{{ name }}s/{{ e['id'] }}/edit">{{ e['title'] }}</a>
      {% if e['draft'] %}<span class="draft">{{ t('draft') }}</span>{% endif %}
    </td>
    <td>{% if e['category'] %}{{ e['category']['title'] }}{% endif %}</td>
    <td><small>{{ e['created_at']|ts }}</small></td>
    <td>
      <form method="post" action="/admin/{{ name }}s/{{ e['id'] }}/delete" style="margin:0">
        {% if csrf_token() %}<input type="hidden" name="csrf" value="{{ csrf_token() }}">{% endif %}
        <button>{{ t('delete') }}</button>
      </form>
    </td>
  </tr>
  {% else %}
  <tr><td colspan="4">{{ t('no_entries') }}</td></tr>
  {% endfor %}
</table>
{% if pages > 1 %}
<nav class="pagination">
  {% if page > 1 %}<a href="{{ page_url(page - 1) }}" rel="prev">← {{ t('newer') }}</a>{% endif %}
  {% if page < pages %}<a href="{{ page_url(page + 1) }}" rel="next">{{ t('older') }} →</a>{% endif %}
</nav>
{% endif %}
{% endblock %}
""")

TEMPL_ENTRY_FORM = """
  {% if csrf_token() %}<input type="hidden" name="csrf" value="{{ csrf_token() }}">{% endif %}
  <label for="title">{{ t('title') }}</label>
  <input type="text" id="title" name="title" value="{{ entry['title'] or '' }}">
  <label for="slug">{{ t('slug') }}</label>
  <input type="text" id="slug" name="slug" value="{{ entry['slug'] or '' }}">
  <label for="body">{{ t('body') }}</label>
  <textarea id="body" name="body" rows="16">{{ entry['body'] or '' }}</textarea>
  <label for="markup">{{ t('markup') }}</label>
  <select id="markup" name="markup">
    {% for m in markups %}
    <option value="{{ m }}"{% if m == entry['markup'] %} selected{% endif %}>{{ m }}</option>
    {% endfor %}
  </select>
  <label for="category_id">{{ t('category') }}</label>
  <select id="category_id" name="category_id">
    {% for cid, ctitle in categories %}
    <option value="{{ cid if cid is not none else '' }}"{% if cid == entry['category_id'] %} selected{% endif %}>{{ ctitle }}</option>
    {% endfor %}
  </select>
  <label for="tag_collection">{{ t('tags') }}</label>
  <input type="text" id="tag_collection" name="tag_collection" value="{{ entry['tag_collection'] or '' }}">
  {% for f in field_names %}
  <label for="field_{{ f['id'] }}">{{ f['name'] }}</label>
  <input type="text" id="field_{{ f['id'] }}" name="field_{{ f['id'] }}" value="{{ (entry['fields'] or {}).get(f['id'], '') }}">
  {% endfor %}
  <label>
    <input type="hidden" name="draft" value="0">
    <input type="checkbox" name="draft" value="1"{% if entry['draft'] %} checked{% endif %}>
    {{ t('draft') }}
  </label>
  <p>
    <button>{{ t('save') }}</button>
    <button name="preview" value="1" formtarget="_blank">{{ t('preview') }}</button>
  </p>
"""

TEMPL_NEW = admin_wrap("""
{% block body %}
<h2>{{ title }}</h2>
<form method="post" action="/admin/{{ name }}s">
""" + TEMPL_ENTRY_FORM + """
</form>
{% endblock %}
""")

TEMPL_EDIT = admin_wrap("""
{% block body %}
<h2>{{ title }}</h2>
{% if entry['link'] and not entry['draft'] %}<p><a href="{{ entry['link'] }}">{{ entry['link'] }}</a></p>{% endif %}
<form method="post" action="/admin/{{ name }}s/{{ entry['id'] }}">
""" + TEMPL_ENTRY_FORM + """
</form>
{% if entry['updated_at'] %}<small>{{ entry['updated_at']|ts }}</small>{% endif %}
{% endblock %}
""")

TEMPL_COMMENTS = admin_wrap("""
{% block body %}
<h2>{{ t('comments') }}</h2>
<table>
  {% for c in comments %}
  <tr>
    <td><img src="{{ gravatar_image_url(c['email'], 24) }}" alt="" width="24" height="24"> {{ c['name'] }}</td>
    <td>{{ hbr(c['body']) }}</td>
    <td><a href="/{{ c['entry_slug'] or c['entry_id'] }}">{{ c['entry_title'] }}</a></td>
    <td>
      <form method="post" action="{{ url_for('admin.remove_comment', comment_id=c['id']) }}" style="margin:0">
        {% if csrf_token() %}<input type="hidden" name="csrf" value="{{ csrf_token() }}">{% endif %}
        <button>{{ t('delete') }}</button>
      </form>
    </td>
  </tr>
  {% else %}
  <tr><td colspan="4">{{ t('no_entries') }}</td></tr>
  {% endfor %}
</table>
{% if pages > 1 %}
<nav class="pagination">
  {% if page > 1 %}<a href="{{ page_url(page - 1) }}" rel="prev">← {{ t('newer') }}</a>{% endif %}
  {% if page < pages %}<a href="{{ page_url(page + 1) }}" rel="next">{{ t('older') }} →</a>{% endif %}
</nav>
{% endif %}
{% endblock %}
""")
