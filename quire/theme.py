"""
Theme types, bundled templates and template fallback.

A handler describes the page it renders with a `ThemeTypes` set, e.g.
``ThemeTypes("category", "entries")``, and hands the candidate template
names to `render_detect`, most specific first.
"""

from datetime import datetime
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, available_timezones

import markdown
from flask import current_app, render_template_string, request, url_for
from jinja2 import TemplatesNotFound
from markupsafe import Markup

from .db import get_db, get_setting, now_iso
from .helpers import current_user, t
from .models import (
    blank_comment,
    entry_link,
    field_names,
    find_category,
    find_user,
    parse_tag_collection,
)

THEME_TYPE_NAMES = (
    "index",
    "search",
    "category",
    "tag",
    "yearly",
    "monthly",
    "daily",
    "post",
    "page",
    "entry",
    "entries",
)
MD_EXTENSIONS = [
    "pymdownx.extra",
    "pymdownx.magiclink",
    "pymdownx.tilde",
    "pymdownx.superfences",
    "pymdownx.betterem",
]
TZ_DFLT = "UTC"


class ThemeTypes:
    """
    Ordered set of symbolic page types.

    Every name in `THEME_TYPE_NAMES` doubles as a predicate, so templates
    can ask ``theme.post`` or ``theme.index``.
    """

    def __init__(self, *names):
        self._names: dict[str, None] = {}
        for name in names:
            self.add(name)

    def add(self, name: str) -> "ThemeTypes":
        self._names.setdefault(str(name), None)
        return self

    def __contains__(self, name) -> bool:
        return name in self._names

    def __iter__(self):
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __getattr__(self, name):
        if name in THEME_TYPE_NAMES:
            return name in self._names
        raise AttributeError(name)

    def __repr__(self):
        return f"ThemeTypes({', '.join(map(repr, self._names))})"


###############################################################################
# Template filters + globals
###############################################################################
def tz_name() -> str:
    tz = get_setting("timezone", TZ_DFLT)
    return tz if tz in available_timezones() else TZ_DFLT


def ts_filter(iso: str | None) -> str:
    if not iso:
        return ""
    try:
        dt = datetime.fromisoformat(iso)
    except ValueError:
        return iso
    return dt.astimezone(ZoneInfo(tz_name())).strftime("%Y.%m.%d %H:%M")


def url_filter(url: str | None) -> str:
    """Only let http(s) links through to an ``href``."""
    if not url:
        return ""
    return url if urlparse(url).scheme in ("http", "https") else ""


def body_filter(entry) -> Markup:
    body = entry.get("body") or ""
    if entry.get("markup") == "markdown":
        return Markup(markdown.markdown(body, extensions=MD_EXTENSIONS))
    return Markup(body)


def page_url(page: int) -> str:
    """The current listing's URL, on another page."""
    args = request.args.to_dict()
    args["page"] = page
    return url_for(request.endpoint, **(request.view_args or {}), **args)


def comment_form(entry, comment=None) -> Markup:
    return Markup(
        render_template_string(
            TEMPL_COMMENT_FORM,
            entry=entry,
            comment=comment or blank_comment(entry.get("id")),
        )
    )


###############################################################################
# Rendering
###############################################################################
def render_detect(*names: str, **context) -> str:
    """
    Render the first template of *names* the configured theme ships, then
    try the same names in the default theme.
    """
    for theme_name in (current_app.config.get("THEME", "default"), "default"):
        templates = THEMES.get(theme_name, {})
        for name in names:
            if name in templates:
                return render_template_string(templates[name], **context)
    raise TemplatesNotFound(names)


def setup_and_render_entry(entry: dict, *, theme_types: ThemeTypes, **context):
    db = get_db()
    theme_types.add("entry")
    theme_types.add(entry["type"])

    category = entry.get("category") or find_category(entry.get("category_id"), db=db)
    bread_crumbs = [{"name": t("home"), "link": "/"}]
    if category:
        bread_crumbs.append({"name": category["title"], "link": category["link"]})
    bread_crumbs.append({"name": entry["title"], "link": entry_link(entry)})

    names = {r["id"]: r["name"] for r in field_names(db=db)}
    fields = [
        (names[fid], value)
        for fid, value in (entry.get("fields") or {}).items()
        if fid in names and value
    ]
    author = entry.get("user")
    if author is None and entry.get("user_id"):
        author = find_user(entry["user_id"], db=db)

    context.setdefault("comments", [])
    context.setdefault("comment", blank_comment(entry.get("id")))
    context[entry["type"]] = entry
    return render_detect(
        entry["type"],
        "entry",
        theme=theme_types,
        title=entry["title"],
        entry=entry,
        category=category,
        author=author,
        fields=fields,
        bread_crumbs=bread_crumbs,
        **context,
    )


def render_preview(entry: dict) -> str:
    """Show an unsaved entry the way its public page would look."""
    entry = dict(entry)
    entry["user"] = current_user()
    entry["title"] = f"{entry['title']} - {t('preview')}"
    entry["updated_at"] = now_iso()
    entry["tags"] = parse_tag_collection(entry.get("tag_collection"))
    entry["category"] = None
    return setup_and_render_entry(entry, theme_types=ThemeTypes(), preview=True)


###############################################################################
# Templates
###############################################################################
def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="{{ locale() }}">
<title>{% if title %}{{ title }} – {% endif %}{{ get_setting('site_name') }}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta charset="utf-8">
<meta name="description" content="{{ get_setting('description') }}">
<style>
body{font-family:-apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,"Helvetica Neue",Arial,sans-serif;font-size:1.05rem;line-height:1.6;max-width:40em;margin:auto;padding:13px;color:#222;background:#fdfdfd}
a{color:#245;text-decoration-thickness:1px;text-underline-offset:.18em}
header{display:flex;gap:1rem;align-items:baseline;flex-wrap:wrap}
header h1{margin:0;font-size:1.6em;flex:1}
header h1 a{text-decoration:none;color:inherit}
.bread-crumbs ol{list-style:none;padding:0;display:flex;gap:.4rem;font-size:.85em;color:#666}
.bread-crumbs li+li:before{content:"›";margin-right:.4rem}
.flashes{background:#eef5e9;border-left:4px solid #7a5;padding:.6rem 1rem .6rem 2rem}
.entry{margin-bottom:2.5rem}
.meta,.tags{font-size:.85em;color:#666}
.preview-banner{background:#fff4d6;padding:.5rem 1rem;border:1px dashed #c90}
.comment{border-top:1px solid #ddd;padding:.75rem 0}
.comment img{vertical-align:middle;border-radius:50%}
aside{border-top:1px solid #ddd;margin-top:3rem;font-size:.9em}
textarea,input{font:inherit;padding:.3rem .5rem;box-sizing:border-box}
textarea{width:100%}
</style>
<body{{ body_attrs(theme, entry, category)|xmlattr }}>
<header>
  <h1><a href="{{ url_for('index') }}">{{ get_setting('site_name') }}</a></h1>
  <form action="{{ url_for('search') }}" method="get" role="search">
    <input name="query" value="{{ query or '' }}" aria-label="search">
  </form>
  {% if logged_in() %}
    <a href="{{ url_for('admin.dashboard') }}">{{ t('dashboard') }}</a>
  {% endif %}
</header>
<nav class="bread-crumbs">{{ bread_crumb(bread_crumbs) }}</nav>
{% with messages = get_flashed_messages() %}
  {% if messages %}
  <ul class="flashes">{% for m in messages %}<li>{{ m }}</li>{% endfor %}</ul>
  {% endif %}
{% endwith %}
<main>
"""

TEMPL_EPILOG = """
</main>
<aside>
  <h3>{{ t('archives') }}</h3>
  <ul class="months">
  {% for m in months() %}
    <li><a href="{{ url_for('monthly', year=m['year']|int, month=m['month']|int) }}">{{ m['year'] }}-{{ m['month'] }}</a> ({{ m['count'] }})</li>
  {% endfor %}
  </ul>
</aside>
<footer><small>{{ get_setting('site_name') }} · <a href="{{ base_url() }}/">{{ base_url() }}</a></small></footer>
</body>
</html>
"""

TEMPL_ENTRIES = wrap("""
{% block body %}
{% if theme.search %}
  <h2>{{ t('search_results_for', query=query) }}</h2>
{% elif theme.category %}
  <h2>{{ category['title'] }}</h2>
  {% if category['description'] %}<p>{{ hbr(category['description']) }}</p>{% endif %}
{% elif theme.tag %}
  <h2>#{{ tag }}</h2>
{% elif theme.yearly or theme.monthly or theme.daily %}
  <h2>{{ title }}</h2>
{% endif %}

{% for e in entries %}
<article class="entry">
  <h2><a href="{{ e['link'] }}">{{ e['title'] }}</a></h2>
  <p class="meta">
    {{ e['created_at']|ts }}
    {% if e['category'] %}· <a href="{{ e['category']['link'] }}">{{ e['category']['title'] }}</a>{% endif %}
  </p>
  <div class="e-content">{{ e|body }}</div>
  {% if e['tags'] %}
  <p class="tags">{% for tg in e['tags'] %}<a href="{{ url_for('tag', name=tg) }}">#{{ tg }}</a> {% endfor %}</p>
  {% endif %}
</article>
{% else %}
  <p>{{ t('no_entries') }}</p>
{% endfor %}

{% if pages > 1 %}
<nav class="pagination">
  {% if page > 1 %}<a href="{{ page_url(page - 1) }}" rel="prev">← {{ t('newer') }}</a>{% endif %}
  {% if page < pages %}<a href="{{ page_url(page + 1) }}" rel="next">{{ t('older') }} →</a>{% endif %}
</nav>
{% endif %}
{% endblock %}
""")

TEMPL_ENTRY = wrap("""
{% block body %}
{% if preview %}<p class="preview-banner">{{ t('preview') }}</p>{% endif %}
<article class="entry h-entry">
  <h2>{{ entry['title'] }}</h2>
  <p class="meta">
    {% if author and not author.is_guest %}
      <img src="{{ gravatar_image_url(author.email, 32) }}" alt="" width="32" height="32">
      {{ author.name }} ·
    {% endif %}
    {{ entry['created_at']|ts }}
    {% if category %}· <a href="{{ category['link'] }}">{{ category['title'] }}</a>{% endif %}
  </p>
  <div class="e-content">{{ entry|body }}</div>
  {% if fields %}
  <dl>
    {% for name, value in fields %}<dt>{{ name }}</dt><dd>{{ value }}</dd>{% endfor %}
  </dl>
  {% endif %}
  {% if entry['tags'] %}
  <p class="tags">{% for tg in entry['tags'] %}<a href="{{ url_for('tag', name=tg) }}">#{{ tg }}</a> {% endfor %}</p>
  {% endif %}
</article>

{% if theme.post %}
<section id="comments">
  <h3>{{ t('comments') }}</h3>
  {% for c in comments %}
  <div class="comment">
    <img src="{{ gravatar_image_url(c['email'], 40) }}" alt="" width="40" height="40">
    <strong>
      {% if c['homepage']|url %}<a href="{{ c['homepage']|url }}" rel="nofollow">{{ c['name'] }}</a>
      {% else %}{{ c['name'] }}{% endif %}
    </strong>
    <small>{{ c['created_at']|ts }}</small>
    <p>{{ hbr(c['body']) }}</p>
  </div>
  {% endfor %}
  {{ comment_form(entry, comment) }}
</section>
{% endif %}
{% endblock %}
""")

TEMPL_PAGE = wrap("""
{% block body %}
{% if preview %}<p class="preview-banner">{{ t('preview') }}</p>{% endif %}
<article class="page">
  <h2>{{ entry['title'] }}</h2>
  <div class="e-content">{{ entry|body }}</div>
</article>
{% endblock %}
""")

TEMPL_COMMENT_FORM = """
<form method="post" action="{{ entry['link'] or '#' }}" class="comment-form">
  {% if csrf_token() %}
  <input type="hidden" name="csrf" value="{{ csrf_token() }}">
  {% endif %}
  <input name="name" placeholder="{{ t('name') }}" value="{{ comment['name'] }}">
  <input name="email" type="email" placeholder="{{ t('email') }}" value="{{ comment['email'] }}">
  <input name="homepage" placeholder="{{ t('homepage') }}" value="{{ comment['homepage'] }}">
  <textarea name="body" rows="5">{{ comment['body'] }}</textarea>
  <button>{{ t('submit_comment') }}</button>
</form>
"""

THEMES = {
    "default": {
        "entries": TEMPL_ENTRIES,
        "entry": TEMPL_ENTRY,
        "page": TEMPL_PAGE,
    },
}
