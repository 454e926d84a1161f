"""tests/test_smoke.py"""

import pytest


@pytest.mark.parametrize(
    "path",
    [
        "/",                 # index
        "/admin/login",      # login form
        "/search?query=x",   # search
        "/2024",             # yearly archive
        "/2024/05",          # monthly archive
        "/2024/05/17",       # daily archive
    ],
)
def test_public_routes_ok(client, path):
    """Each public endpoint should return a *successful* HTTP status."""
    rv = client.get(path)
    assert rv.status_code == 200


@pytest.mark.parametrize("path", ["/2024/13", "/2024/02/30"])
def test_impossible_dates_are_404(client, path):
    assert client.get(path).status_code == 404


def test_not_found(client):
    """Completely unknown URL → 404 page."""
    rv = client.get("/does/not/exist")
    assert rv.status_code == 404
    assert b"Page not found" in rv.data
