"""
Rows for entries, categories, custom fields, tags, users and comments.

Entries are plain dicts built from sqlite rows; the ``type`` column
(``post`` or ``page``) is the only thing that tells one kind from the other.
"""

import re

from werkzeug.security import check_password_hash, generate_password_hash

from .db import now_iso, paginate

ENTRY_TYPES = ("post", "page")
MARKUPS = ("markdown", "html")
SLUG_RE = re.compile(r"^[\w-]+$")
TAG_SPLIT_RE = re.compile(r"[,\s]+")
# first path segments the public routes already claim
RESERVED_SLUGS = {"admin", "search", "category", "tags"}
ENTRY_COLUMNS = (
    "title",
    "slug",
    "body",
    "markup",
    "draft",
    "category_id",
)


def pluralize(name: str) -> str:
    return f"{name}s"


###############################################################################
# Users
###############################################################################
class GuestUser:
    """Whoever is browsing without a session."""

    id = None
    name = "guest"
    email = None
    is_guest = True

    def __eq__(self, other):
        return isinstance(other, GuestUser)

    def __hash__(self):
        return hash(GuestUser)


class User:
    is_guest = False

    def __init__(self, row):
        self.id = row["id"]
        self.name = row["name"]
        self.email = row["email"]
        self.created_at = row["created_at"]

    def __eq__(self, other):
        return isinstance(other, User) and other.id == self.id

    def __hash__(self):
        return hash(("user", self.id))

    def __repr__(self):
        return f"<User {self.id} {self.name!r}>"


def find_user(user_id, *, db) -> User | None:
    row = db.execute("SELECT * FROM user WHERE id=?", (user_id,)).fetchone()
    return User(row) if row else None


def create_user(*, name: str, email: str | None, password: str, db) -> int:
    cur = db.execute(
        "INSERT INTO user (name, email, password_hash, created_at) VALUES (?,?,?,?)",
        (name, email, generate_password_hash(password), now_iso()),
    )
    db.commit()
    return cur.lastrowid


def authenticate(name: str, password: str, *, db) -> User | None:
    row = db.execute("SELECT * FROM user WHERE name=?", (name,)).fetchone()
    if row and check_password_hash(row["password_hash"], password):
        return User(row)
    return None


###############################################################################
# Categories + field names
###############################################################################
def category_link(category) -> str:
    return f"/category/{category['slug']}"


def _category_dict(row) -> dict:
    cat = dict(row)
    cat["link"] = category_link(cat)
    return cat


def all_categories(*, db) -> list[dict]:
    rows = db.execute("SELECT * FROM category ORDER BY title COLLATE NOCASE").fetchall()
    return [_category_dict(r) for r in rows]


def find_category(category_id, *, db) -> dict | None:
    if category_id is None:
        return None
    row = db.execute("SELECT * FROM category WHERE id=?", (category_id,)).fetchone()
    return _category_dict(row) if row else None


def find_category_by_slug(slug: str, *, db) -> dict | None:
    row = db.execute("SELECT * FROM category WHERE slug=?", (slug,)).fetchone()
    return _category_dict(row) if row else None


def create_category(
    *, title: str, slug: str, description: str | None = None, parent_id=None, db
) -> int:
    if not SLUG_RE.match(slug):
        raise ValueError(f"invalid category slug: {slug!r}")
    cur = db.execute(
        "INSERT INTO category (title, slug, description, parent_id) VALUES (?,?,?,?)",
        (title, slug, description, parent_id),
    )
    db.commit()
    return cur.lastrowid


def field_names(*, db):
    return db.execute("SELECT * FROM field_name ORDER BY name ASC").fetchall()


def create_field_name(name: str, *, db) -> int:
    cur = db.execute("INSERT INTO field_name (name) VALUES (?)", (name,))
    db.commit()
    return cur.lastrowid


###############################################################################
# Tags
###############################################################################
def parse_tag_collection(text: str | None) -> list[str]:
    """`"python, flask web"` → `["python", "flask", "web"]` (order kept, no dups)."""
    seen: dict[str, None] = {}
    for name in TAG_SPLIT_RE.split(text or ""):
        name = name.strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)


def sync_tags(entry_id: int, tags: list[str], *, db):
    """
    Bring `entry_tag` + `tag` tables in sync with *tags* for *entry_id*.
    Removes orphaned tags automatically.
    """
    cur = set(entry_tags(entry_id, db=db))
    wanted = set(tags)

    for t in wanted - cur:
        db.execute("INSERT OR IGNORE INTO tag(name) VALUES(?)", (t,))
        tag_id = db.execute("SELECT id FROM tag WHERE name=?", (t,)).fetchone()["id"]
        db.execute("INSERT OR IGNORE INTO entry_tag VALUES (?,?)", (entry_id, tag_id))

    for t in cur - wanted:
        db.execute(
            "DELETE FROM entry_tag WHERE entry_id=? "
            "AND tag_id=(SELECT id FROM tag WHERE name=?)",
            (entry_id, t),
        )

    db.execute(
        "DELETE FROM tag WHERE id NOT IN (SELECT DISTINCT tag_id FROM entry_tag)"
    )


def entry_tags(entry_id: int, *, db) -> list[str]:
    rows = db.execute(
        "SELECT t.name FROM tag t JOIN entry_tag et ON t.id=et.tag_id "
        "WHERE et.entry_id=? ORDER BY t.name",
        (entry_id,),
    ).fetchall()
    return [r["name"] for r in rows]


###############################################################################
# Custom fields
###############################################################################
def sync_fields(entry_id: int, fields: dict[int, str], *, db):
    for field_name_id, value in fields.items():
        if value:
            db.execute(
                "INSERT INTO field (entry_id, field_name_id, value) VALUES (?,?,?) "
                "ON CONFLICT(entry_id, field_name_id) DO UPDATE SET value=excluded.value",
                (entry_id, field_name_id, value),
            )
        else:
            db.execute(
                "DELETE FROM field WHERE entry_id=? AND field_name_id=?",
                (entry_id, field_name_id),
            )


def entry_fields(entry_id: int, *, db) -> dict[int, str]:
    rows = db.execute(
        "SELECT field_name_id, value FROM field WHERE entry_id=?", (entry_id,)
    ).fetchall()
    return {r["field_name_id"]: r["value"] for r in rows}


###############################################################################
# Entries
###############################################################################
def entry_link(entry) -> str:
    if entry.get("slug"):
        return f"/{entry['slug']}"
    if entry.get("id"):
        return f"/{entry['id']}"
    return "#"


def blank_entry(entry_type: str, **attrs) -> dict:
    entry = {
        "id": None,
        "type": entry_type,
        "user_id": None,
        "category_id": None,
        "title": "",
        "slug": "",
        "body": "",
        "markup": MARKUPS[0],
        "draft": False,
        "created_at": None,
        "updated_at": None,
        "tag_collection": "",
        "fields": {},
    }
    entry.update(attrs)
    return entry


def _form_flag(form, key: str, default: bool) -> bool:
    # checkboxes come after a hidden "0" field, so the last value wins
    values = form.getlist(key) if hasattr(form, "getlist") else [form[key]]
    if not values:
        return default
    return values[-1] in ("1", "true", "on", "yes")


def entry_attrs(form, *, base: dict | None = None, field_ids=()) -> dict:
    """
    Pull entry attributes out of a submitted form.

    Keys the form does not carry keep their value from *base*.
    """
    attrs = dict(base) if base else {}
    for key in ("title", "slug", "markup"):
        if key in form:
            attrs[key] = form.get(key, "").strip()
    if "body" in form:
        attrs["body"] = form.get("body", "").rstrip()
    if "draft" in form:
        attrs["draft"] = _form_flag(form, "draft", bool(attrs.get("draft")))
    if "category_id" in form:
        raw = form.get("category_id", "").strip()
        attrs["category_id"] = int(raw) if raw.isdigit() else None
    if "tag_collection" in form:
        attrs["tag_collection"] = form.get("tag_collection", "")
    fields = dict(attrs.get("fields") or {})
    for fid in field_ids:
        key = f"field_{fid}"
        if key in form:
            fields[fid] = form.get(key, "").strip()
    attrs["fields"] = fields
    return attrs


def validate_entry(attrs: dict, *, db, entry_id=None) -> list[str]:
    """Return translation keys for every problem found (empty list → valid)."""
    errors = []
    if not (attrs.get("title") or "").strip():
        errors.append("title_is_required")
    if not (attrs.get("body") or "").strip():
        errors.append("body_is_required")

    slug = attrs.get("slug") or ""
    if slug:
        if not SLUG_RE.match(slug) or slug.isdigit():
            errors.append("slug_is_invalid")
        elif slug in RESERVED_SLUGS:
            errors.append("slug_is_reserved")
        else:
            row = db.execute("SELECT id FROM entry WHERE slug=?", (slug,)).fetchone()
            if row and row["id"] != entry_id:
                errors.append("slug_is_already_taken")

    if attrs.get("markup") not in MARKUPS:
        errors.append("markup_is_invalid")

    category_id = attrs.get("category_id")
    if category_id is not None and find_category(category_id, db=db) is None:
        errors.append("category_does_not_exist")
    return errors


def _entry_dict(row, *, db) -> dict:
    entry = dict(row)
    entry["draft"] = bool(entry["draft"])
    tags = entry_tags(entry["id"], db=db)
    entry["tags"] = tags
    entry["tag_collection"] = ", ".join(tags)
    entry["fields"] = entry_fields(entry["id"], db=db)
    entry["category"] = find_category(entry["category_id"], db=db)
    entry["link"] = entry_link(entry)
    return entry


def find_entry(entry_type: str, entry_id, *, db) -> dict | None:
    row = db.execute(
        "SELECT * FROM entry WHERE type=? AND id=?", (entry_type, entry_id)
    ).fetchone()
    return _entry_dict(row, db=db) if row else None


def find_by_id_or_slug(id_or_slug: str, *, db, include_drafts: bool = False):
    """Slug match first, then a numeric id."""
    draft_sql = "" if include_drafts else " AND draft=0"
    row = db.execute(
        f"SELECT * FROM entry WHERE slug=?{draft_sql}", (id_or_slug,)
    ).fetchone()
    if row is None and id_or_slug.isdigit():
        row = db.execute(
            f"SELECT * FROM entry WHERE id=?{draft_sql}", (int(id_or_slug),)
        ).fetchone()
    return _entry_dict(row, db=db) if row else None


def create_entry(entry_type: str, attrs: dict, *, user_id, db):
    """Insert a new entry. Returns ``(entry_id, errors)``."""
    errors = validate_entry(attrs, db=db)
    if errors:
        return None, errors

    now = now_iso()
    cur = db.execute(
        """INSERT INTO entry
               (type, user_id, category_id, title, slug, body, markup, draft,
                created_at, updated_at)
           VALUES (?,?,?,?,?,?,?,?,?,?)""",
        (
            entry_type,
            user_id,
            attrs.get("category_id"),
            attrs["title"],
            attrs.get("slug") or None,
            attrs["body"],
            attrs["markup"],
            int(bool(attrs.get("draft"))),
            now,
            now,
        ),
    )
    entry_id = cur.lastrowid
    sync_tags(entry_id, parse_tag_collection(attrs.get("tag_collection")), db=db)
    sync_fields(entry_id, attrs.get("fields") or {}, db=db)
    db.commit()
    return entry_id, []


def update_entry(entry: dict, attrs: dict, *, tag_collection=None, db) -> list[str]:
    """
    Write *attrs* over *entry* in place; nothing is stored when invalid.

    Tags are only touched when *tag_collection* is given.
    """
    errors = validate_entry(attrs, db=db, entry_id=entry["id"])
    if errors:
        return errors

    now = now_iso()
    db.execute(
        f"UPDATE entry SET {', '.join(f'{c}=?' for c in ENTRY_COLUMNS)}, updated_at=? "
        "WHERE id=?",
        (
            attrs["title"],
            attrs.get("slug") or None,
            attrs["body"],
            attrs["markup"],
            int(bool(attrs.get("draft"))),
            attrs.get("category_id"),
            now,
            entry["id"],
        ),
    )
    sync_fields(entry["id"], attrs.get("fields") or {}, db=db)
    if tag_collection is not None:
        tags = parse_tag_collection(tag_collection)
        sync_tags(entry["id"], tags, db=db)
        entry["tags"] = sorted(tags)
        entry["tag_collection"] = ", ".join(entry["tags"])
    db.commit()

    entry.update({c: attrs.get(c) for c in ENTRY_COLUMNS}, updated_at=now)
    entry["slug"] = entry["slug"] or None
    entry["draft"] = bool(entry["draft"])
    entry["fields"] = attrs.get("fields") or {}
    return []


def destroy_entry(entry: dict, *, db):
    db.execute("DELETE FROM entry WHERE id=?", (entry["id"],))
    db.execute(
        "DELETE FROM tag WHERE id NOT IN (SELECT DISTINCT tag_id FROM entry_tag)"
    )
    db.commit()


def list_entries(entry_type: str, *, drafts_only: bool, page: int, per_page: int, db):
    sql = "SELECT * FROM entry WHERE type=?"
    if drafts_only:
        sql += " AND draft=1"
    sql += " ORDER BY created_at DESC, id DESC"
    return paginate_entries(sql, (entry_type,), page=page, per_page=per_page, db=db)


def paginate_entries(sql: str, params: tuple, *, page: int, per_page: int, db):
    rows, pages = paginate(sql, params, page=page, per_page=per_page, db=db)
    return [_entry_dict(r, db=db) for r in rows], pages


def published_posts(
    *, db, page: int, per_page: int, where: str = "", params: tuple = ()
):
    sql = "SELECT * FROM entry WHERE type='post' AND draft=0"
    if where:
        sql += f" AND ({where})"
    sql += " ORDER BY created_at DESC, id DESC"
    return paginate_entries(sql, params, page=page, per_page=per_page, db=db)


###############################################################################
# Comments
###############################################################################
def comments_for(entry_id: int, *, db):
    return db.execute(
        "SELECT * FROM comment WHERE entry_id=? ORDER BY created_at, id", (entry_id,)
    ).fetchall()


def blank_comment(entry_id=None) -> dict:
    return {"entry_id": entry_id, "name": "", "email": "", "homepage": "", "body": ""}


def create_comment(entry_id: int, form, *, db):
    """Returns ``(comment_dict, errors)``; nothing is stored when invalid."""
    comment = blank_comment(entry_id)
    for key in ("name", "email", "homepage", "body"):
        comment[key] = form.get(key, "").strip()

    errors = []
    if not comment["name"]:
        errors.append("name_is_required")
    if not comment["body"]:
        errors.append("body_is_required")
    if errors:
        return comment, errors

    cur = db.execute(
        """INSERT INTO comment (entry_id, name, email, homepage, body, created_at)
           VALUES (?,?,?,?,?,?)""",
        (
            entry_id,
            comment["name"],
            comment["email"] or None,
            comment["homepage"] or None,
            comment["body"],
            now_iso(),
        ),
    )
    db.commit()
    comment["id"] = cur.lastrowid
    return comment, []


def all_comments(*, db, page: int, per_page: int):
    return paginate(
        """SELECT c.*, e.title AS entry_title, e.slug AS entry_slug
             FROM comment c JOIN entry e ON e.id=c.entry_id
         ORDER BY c.created_at DESC, c.id DESC""",
        (),
        page=page,
        per_page=per_page,
        db=db,
    )


def delete_comment(comment_id: int, *, db) -> bool:
    cur = db.execute("DELETE FROM comment WHERE id=?", (comment_id,))
    db.commit()
    return cur.rowcount > 0


