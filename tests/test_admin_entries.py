"""
tests/test_admin_entries.py
"""
from __future__ import annotations

import pytest

from quire.db import get_db
from quire.models import create_category, create_field_name, find_entry

CSRF = "test-token"          # matches the session set up by the `admin` fixture


def _form(**overrides) -> dict:
    data = {
        "title": "Hello",
        "slug": "",
        "body": "hello **world**",
        "markup": "markdown",
        "category_id": "",
        "tag_collection": "",
        "draft": "0",
        "csrf": CSRF,
    }
    data.update(overrides)
    return data


def _count(entry_type: str = "post") -> int:
    return get_db().execute(
        "SELECT COUNT(*) FROM entry WHERE type=?", (entry_type,)
    ).fetchone()[0]


def _id_of(title: str) -> int:
    return get_db().execute("SELECT id FROM entry WHERE title=?", (title,)).fetchone()[
        "id"
    ]


# ───────────────────────── create ──────────────────────────────────────
@pytest.mark.parametrize("entry_type", ["post", "page"])
def test_create_draft_redirects_to_draft_list(admin, entry_type):
    rv = admin.post(
        f"/admin/{entry_type}s", data=_form(title="Draft one", draft=["0", "1"])
    )
    assert rv.status_code == 302
    assert rv.headers["Location"] == f"/admin/{entry_type}s?draft=true"

    entry = find_entry(entry_type, _id_of("Draft one"), db=get_db())
    assert entry["draft"] is True
    assert entry["user_id"] == 1


@pytest.mark.parametrize("entry_type", ["post", "page"])
def test_create_published_redirects_to_edit(admin, entry_type):
    rv = admin.post(f"/admin/{entry_type}s", data=_form(title="Out now"))
    assert rv.status_code == 302
    assert rv.headers["Location"] == f"/admin/{entry_type}s/{_id_of('Out now')}/edit"


def test_create_sets_flash_notice(admin):
    rv = admin.post("/admin/posts", data=_form(title="Flashy"), follow_redirects=True)
    assert rv.status_code == 200
    assert b"Post was successfully created." in rv.data


def test_create_stores_tags_and_fields(admin):
    fid = create_field_name("mood", db=get_db())
    admin.post(
        "/admin/posts",
        data=_form(title="Tagged", tag_collection="python, flask", **{f"field_{fid}": "sunny"}),
    )
    entry = find_entry("post", _id_of("Tagged"), db=get_db())
    assert entry["tags"] == ["flask", "python"]
    assert entry["fields"] == {fid: "sunny"}


def test_create_validation_failure_keeps_input(admin):
    db = get_db()
    create_category(title="Travel", slug="travel", db=db)
    before = _count()

    rv = admin.post(
        "/admin/posts", data=_form(title="", body="my precious draft text")
    )
    assert rv.status_code == 200
    html = rv.data.decode()
    assert "Title is required." in html
    assert "my precious draft text" in html       # nothing lost
    assert "Not selected" in html                 # reference data is back
    assert "Travel" in html
    assert _count() == before


def test_create_preview_does_not_persist(admin):
    before = _count()
    rv = admin.post("/admin/posts", data=_form(title="Peek", preview="1"))
    assert rv.status_code == 200
    assert b"Peek - Preview" in rv.data
    assert b"<strong>world</strong>" in rv.data
    assert _count() == before


def test_create_preview_ignores_validation(admin):
    before = _count()
    rv = admin.post("/admin/posts", data=_form(title="", body="", preview="1"))
    assert rv.status_code == 200
    assert b" - Preview" in rv.data
    assert _count() == before


def test_create_rejects_duplicate_slug(admin, make_entry):
    make_entry(title="First", slug="same")
    rv = admin.post("/admin/posts", data=_form(title="Second", slug="same"))
    assert rv.status_code == 200
    assert b"That slug is already taken." in rv.data


# ───────────────────────── list / new / edit ────────────────────────────
def test_list_filters_drafts(admin, make_entry):
    make_entry(title="Visible post")
    make_entry(title="Hidden draft", draft=True)

    everything = admin.get("/admin/posts").data
    assert b"Visible post" in everything and b"Hidden draft" in everything

    drafts = admin.get("/admin/posts?draft=true").data
    assert b"Hidden draft" in drafts
    assert b"Visible post" not in drafts


def test_list_only_shows_requested_type(admin, make_entry):
    make_entry("page", title="About me")
    make_entry("post", title="Some post")
    html = admin.get("/admin/pages").data
    assert b"About me" in html
    assert b"Some post" not in html


def test_list_paginates(admin, make_entry, monkeypatch):
    from quire import admin as admin_module

    monkeypatch.setattr(admin_module, "setting_int", lambda key, default: 2)
    for i in range(3):
        make_entry(title=f"Numbered {i}")
    first = admin.get("/admin/posts").data
    assert first.count(b"Numbered") == 2
    assert b"page=2" in first
    second = admin.get("/admin/posts?page=2").data
    assert second.count(b"Numbered") == 1


def test_new_form_uses_default_markup(admin):
    from quire.db import set_setting

    set_setting("default_markup", "html")
    html = admin.get("/admin/posts/new").data.decode()
    assert '<option value="html" selected>' in html


def test_edit_form_renders_entry(admin, make_entry):
    entry_id = make_entry(title="Editable")
    rv = admin.get(f"/admin/posts/{entry_id}/edit")
    assert rv.status_code == 200
    assert b"Editable" in rv.data


def test_edit_missing_is_404(admin):
    assert admin.get("/admin/posts/999/edit").status_code == 404


def test_edit_with_wrong_type_is_404(admin, make_entry):
    page_id = make_entry("page", title="A page")
    assert admin.get(f"/admin/posts/{page_id}/edit").status_code == 404


def test_unknown_type_is_404(admin):
    assert admin.get("/admin/widgets").status_code == 404


# ───────────────────────── update ──────────────────────────────────────
def test_update_published_redirects_to_edit(admin, make_entry):
    entry_id = make_entry(title="Before")
    rv = admin.post(f"/admin/posts/{entry_id}", data=_form(title="After"))
    assert rv.status_code == 302
    assert rv.headers["Location"] == f"/admin/posts/{entry_id}/edit"
    assert find_entry("post", entry_id, db=get_db())["title"] == "After"


def test_update_to_draft_redirects_to_draft_list(admin, make_entry):
    entry_id = make_entry(title="Going back")
    rv = admin.put(
        f"/admin/posts/{entry_id}", data=_form(title="Going back", draft=["0", "1"])
    )
    assert rv.status_code == 302
    assert rv.headers["Location"] == "/admin/posts?draft=true"
    assert find_entry("post", entry_id, db=get_db())["draft"] is True


def test_update_applies_tags(admin, make_entry):
    entry_id = make_entry(title="Tags later", tag_collection="old")
    admin.post(f"/admin/posts/{entry_id}", data=_form(title="Tags later", tag_collection="new one"))
    entry = find_entry("post", entry_id, db=get_db())
    assert entry["tags"] == ["new", "one"]
    # orphaned tag is collected
    assert get_db().execute("SELECT 1 FROM tag WHERE name='old'").fetchone() is None


def test_update_without_tag_collection_keeps_tags(admin, make_entry):
    entry_id = make_entry(title="Keep tags", tag_collection="stay")
    data = _form(title="Keep tags 2")
    del data["tag_collection"]
    admin.post(f"/admin/posts/{entry_id}", data=data)
    assert find_entry("post", entry_id, db=get_db())["tags"] == ["stay"]


def test_update_validation_failure_keeps_stored_entry(admin, make_entry):
    entry_id = make_entry(title="Stable", body="stored body")
    rv = admin.post(
        f"/admin/posts/{entry_id}", data=_form(title="", body="typed but invalid")
    )
    assert rv.status_code == 200
    assert b"Title is required." in rv.data
    assert b"typed but invalid" in rv.data
    entry = find_entry("post", entry_id, db=get_db())
    assert entry["title"] == "Stable"
    assert entry["body"] == "stored body"


def test_update_preview_leaves_entry_alone(admin, make_entry):
    entry_id = make_entry(title="Original", tag_collection="keep")
    rv = admin.post(
        f"/admin/posts/{entry_id}",
        data=_form(title="Changed", tag_collection="other", preview="1"),
    )
    assert rv.status_code == 200
    assert b"Changed - Preview" in rv.data
    entry = find_entry("post", entry_id, db=get_db())
    assert entry["title"] == "Original"
    assert entry["tags"] == ["keep"]


def test_update_missing_is_404(admin):
    assert admin.post("/admin/posts/4242", data=_form()).status_code == 404


# ───────────────────────── delete ──────────────────────────────────────
def test_delete_published_redirects_to_list(admin, make_entry):
    entry_id = make_entry(title="Bye")
    rv = admin.post(f"/admin/posts/{entry_id}/delete", data={"csrf": CSRF})
    assert rv.status_code == 302
    assert rv.headers["Location"] == "/admin/posts"
    assert find_entry("post", entry_id, db=get_db()) is None


def test_delete_draft_redirects_to_draft_list(admin, make_entry):
    entry_id = make_entry("page", title="Bye draft", draft=True)
    rv = admin.delete(f"/admin/pages/{entry_id}", headers={"X-CSRFToken": CSRF})
    assert rv.status_code == 302
    assert rv.headers["Location"] == "/admin/pages?draft=true"


def test_delete_flashes_notice(admin, make_entry):
    entry_id = make_entry(title="Noted")
    rv = admin.post(
        f"/admin/posts/{entry_id}/delete", data={"csrf": CSRF}, follow_redirects=True
    )
    assert b"Post was successfully deleted." in rv.data


@pytest.mark.parametrize("entry_type", ["post", "page"])
def test_delete_missing_is_404(admin, entry_type):
    rv = admin.post(f"/admin/{entry_type}s/31337/delete", data={"csrf": CSRF})
    assert rv.status_code == 404
    assert b"Page not found" in rv.data


# ───────────────────────── comments ────────────────────────────────────
def test_admin_can_delete_comment(admin, make_entry):
    entry_id = make_entry(title="Discussed", slug="discussed")
    db = get_db()
    db.execute(
        "INSERT INTO comment (entry_id, name, body, created_at) VALUES (?,?,?,?)",
        (entry_id, "visitor", "nice", "2024-01-01T00:00:00+00:00"),
    )
    db.commit()
    comment_id = db.execute("SELECT id FROM comment").fetchone()["id"]

    listing = admin.get("/admin/comments")
    assert b"visitor" in listing.data

    rv = admin.post(f"/admin/comments/{comment_id}/delete", data={"csrf": CSRF})
    assert rv.status_code == 302
    assert db.execute("SELECT COUNT(*) FROM comment").fetchone()[0] == 0
    assert (
        admin.post(f"/admin/comments/{comment_id}/delete", data={"csrf": CSRF}).status_code
        == 404
    )


def test_dashboard_counts(admin, make_entry):
    make_entry(title="one")
    make_entry(title="two", draft=True)
    rv = admin.get("/admin/")
    assert rv.status_code == 200
    assert b"Drafts: 1" in rv.data
