# link-analytics-service/tests/test_links.py
import re
from datetime import timedelta
from urllib.parse import quote

import pytest
from models import Link, utcnow


def _future(days: int = 7) -> str:
    return (utcnow() + timedelta(days=days)).isoformat() + "Z"


@pytest.mark.asyncio
async def test_create_link_generates_slug(client, user, auth_headers):
    response = await client.post(
        "/v1/links",
        json={"target": "https://example.com/article", "user_id": str(user.id), "title": "Article"},
        headers=auth_headers,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "success"
    slug = body["data"]["slug"]
    assert re.fullmatch(r"[A-Za-z0-9]{6}", slug)
    assert body["short_url"] == f"http://short.test/{slug}"
    assert body["qr_url"].endswith("data=" + quote(f"http://short.test/{slug}", safe=""))
    assert body["data"]["clicks"] == 0

    stored = await Link.find_one(Link.slug == slug)
    assert stored.target == "https://example.com/article"
    assert stored.user_id == user.id


@pytest.mark.asyncio
async def test_create_link_with_custom_slug_and_expiry(client, user, auth_headers):
    response = await client.post(
        "/v1/links",
        json={
            "target": "https://example.com/",
            "user_id": str(user.id),
            "slug": "spring-sale",
            "expires_at": _future(),
        },
        headers=auth_headers,
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["slug"] == "spring-sale"
    assert data["expires_at"] is not None
    assert data["is_expired"] is False
    assert data["is_active"] is True


@pytest.mark.asyncio
async def test_create_link_rejects_taken_slug(client, user, auth_headers, other_user, make_link):
    # Slugs are unique across all owners.
    await make_link(other_user, "taken")

    response = await client.post(
        "/v1/links",
        json={"target": "https://example.com/", "user_id": str(user.id), "slug": "taken"},
        headers=auth_headers,
    )

    assert response.status_code == 422
    assert response.json() == {
        "status": "error",
        "message": "This custom slug is already taken. Please choose another one.",
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"target": "not a url"},
        {"target": "https://example.com/", "slug": "Upper"},
        {"target": "https://example.com/", "slug": "has space"},
        {"target": "https://example.com/", "slug": "x" * 51},
        {"target": "https://example.com/" + "a" * 2048},
        {"target": "https://example.com/", "title": "t" * 256},
        {"target": "https://example.com/", "expires_at": "2001-01-01T00:00:00Z"},
    ],
)
async def test_create_link_validation(client, user, auth_headers, payload):
    response = await client.post(
        "/v1/links", json={"user_id": str(user.id), **payload}, headers=auth_headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_link_for_another_user_is_rejected(client, auth_headers, other_user):
    response = await client.post(
        "/v1/links",
        json={"target": "https://example.com/", "user_id": str(other_user.id)},
        headers=auth_headers,
    )
    assert response.status_code == 422
    assert await Link.count() == 0


@pytest.mark.asyncio
async def test_links_require_authentication(client):
    response = await client.get("/v1/links")
    assert response.status_code == 401
    assert response.json() == {"error": "Token not provided"}


@pytest.mark.asyncio
async def test_get_link_includes_total_redirects(client, user, auth_headers, make_link, make_hit):
    link = await make_link(user, "stats")
    await make_hit(link)
    await make_hit(link)

    response = await client.get(f"/v1/links/{link.id}", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["data"]["total_redirects"] == 2


@pytest.mark.asyncio
async def test_foreign_link_is_not_found(client, auth_headers, other_user, make_link):
    link = await make_link(other_user, "private")

    assert (await client.get(f"/v1/links/{link.id}", headers=auth_headers)).status_code == 404
    assert (
        await client.put(f"/v1/links/{link.id}", json={"title": "mine"}, headers=auth_headers)
    ).status_code == 404
    assert (await client.delete(f"/v1/links/{link.id}", headers=auth_headers)).status_code == 404
    assert (await client.get("/v1/links/not-an-id", headers=auth_headers)).status_code == 404


@pytest.mark.asyncio
async def test_list_links_active_filter(client, user, auth_headers, make_link):
    await make_link(user, "forever")
    await make_link(user, "later", expires_at=utcnow() + timedelta(days=1))
    await make_link(user, "past", expires_at=utcnow() - timedelta(days=1))
    await make_link(user, "removed", deleted_at=utcnow())

    active = await client.get("/v1/links", params={"active": 1}, headers=auth_headers)
    expired = await client.get("/v1/links", params={"active": 0}, headers=auth_headers)
    everything = await client.get("/v1/links", headers=auth_headers)

    assert sorted(link["slug"] for link in active.json()["data"]) == ["forever", "later"]
    assert [link["slug"] for link in expired.json()["data"]] == ["past"]
    assert everything.json()["meta"]["total"] == 3


@pytest.mark.asyncio
async def test_list_links_keyword_and_sorting(client, user, auth_headers, other_user, make_link):
    await make_link(user, "alpha", target="https://news.example.com/a", clicks=5)
    await make_link(user, "beta", target="https://shop.example.com/b", title="Summer NEWS", clicks=9)
    await make_link(user, "gamma", target="https://blog.example.com/c", clicks=1)
    await make_link(other_user, "news", target="https://news.example.com/z")

    response = await client.get(
        "/v1/links",
        params={"keyword": "news", "sort_by": "clicks", "sort_dir": "asc"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert [link["slug"] for link in response.json()["data"]] == ["alpha", "beta"]


@pytest.mark.asyncio
async def test_list_links_pagination(client, user, auth_headers, make_link):
    for index in range(5):
        await make_link(user, f"page{index}")

    response = await client.get(
        "/v1/links", params={"page": 2, "per_page": 2, "sort_by": "slug", "sort_dir": "asc"}, headers=auth_headers
    )

    body = response.json()
    assert [link["slug"] for link in body["data"]] == ["page2", "page3"]
    assert body["meta"] == {"page": 2, "per_page": 2, "total": 5, "last_page": 3}


@pytest.mark.asyncio
async def test_list_links_rejects_unknown_sort_column(client, auth_headers):
    response = await client.get("/v1/links", params={"sort_by": "password"}, headers=auth_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_link_changes_slug_and_qr(client, user, auth_headers, make_link):
    link = await make_link(user, "before", qr_url="old")

    response = await client.put(
        f"/v1/links/{link.id}",
        json={"slug": "after", "title": "Renamed"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["slug"] == "after"
    assert data["title"] == "Renamed"
    assert data["qr_url"].endswith(quote("http://short.test/after", safe=""))
    assert (await client.get("/after")).status_code == 302
    assert (await client.get("/before")).status_code == 404


@pytest.mark.asyncio
async def test_update_link_keeps_own_slug_and_rejects_taken_one(client, user, auth_headers, make_link):
    link = await make_link(user, "mine")
    await make_link(user, "theirs")

    same = await client.put(f"/v1/links/{link.id}", json={"slug": "mine"}, headers=auth_headers)
    clash = await client.put(f"/v1/links/{link.id}", json={"slug": "theirs"}, headers=auth_headers)

    assert same.status_code == 200
    assert clash.status_code == 422


@pytest.mark.asyncio
async def test_update_link_can_clear_expiry(client, user, auth_headers, make_link):
    link = await make_link(user, "clear", expires_at=utcnow() + timedelta(days=3))

    response = await client.put(f"/v1/links/{link.id}", json={"expires_at": None}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["data"]["expires_at"] is None


@pytest.mark.asyncio
async def test_delete_link_is_soft(client, user, auth_headers, make_link, make_hit):
    link = await make_link(user, "bye")
    await make_hit(link)

    response = await client.delete(f"/v1/links/{link.id}", headers=auth_headers)

    assert response.status_code == 200
    stored = await Link.get(link.id)
    assert stored.deleted_at is not None
    assert (await client.get("/bye")).status_code == 404
    assert (await client.get(f"/v1/links/{link.id}", headers=auth_headers)).status_code == 404


@pytest.mark.asyncio
async def test_bulk_delete_only_touches_own_links(client, user, auth_headers, other_user, make_link):
    mine = [await make_link(user, f"mine{index}") for index in range(2)]
    theirs = await make_link(other_user, "theirs")

    response = await client.post(
        "/v1/links/bulk-delete",
        json={"ids": [str(link.id) for link in mine] + [str(theirs.id), "junk"]},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json()["data"] == {"deleted": 2}
    assert (await Link.get(theirs.id)).deleted_at is None


@pytest.mark.asyncio
async def test_bulk_export_only_returns_own_links(client, user, auth_headers, other_user, make_link):
    mine = await make_link(user, "export")
    theirs = await make_link(other_user, "nope")

    response = await client.post(
        "/v1/links/bulk-export",
        json={"ids": [str(mine.id), str(theirs.id)]},
        headers=auth_headers,
    )

    assert [link["slug"] for link in response.json()["data"]] == ["export"]


@pytest.mark.asyncio
async def test_bulk_endpoints_require_ids(client, auth_headers):
    response = await client.post("/v1/links/bulk-delete", json={"ids": []}, headers=auth_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_redirects_requires_own_user_id(client, auth_headers, other_user):
    missing = await client.get("/v1/redirects", headers=auth_headers)
    foreign = await client.get(
        "/v1/redirects", params={"user_id": str(other_user.id)}, headers=auth_headers
    )

    assert missing.status_code == 400
    assert foreign.status_code == 404


@pytest.mark.asyncio
async def test_list_redirects_pages_newest_first(
    client, user, auth_headers, other_user, make_link, make_hit
):
    link = await make_link(user, "feed", title="Feed")
    hits = [await make_hit(link, device="Desktop") for _ in range(3)]
    await make_hit(await make_link(other_user, "elsewhere"))

    first = await client.get(
        "/v1/redirects", params={"user_id": str(user.id), "limit": 2}, headers=auth_headers
    )
    first_body = first.json()
    assert [item["id"] for item in first_body["data"]] == [str(hits[2].id), str(hits[1].id)]
    assert first_body["data"][0]["link"] == {
        "id": str(link.id),
        "slug": "feed",
        "title": "Feed",
        "target": "https://example.com/",
    }
    assert first_body["next_cursor"] == str(hits[1].id)

    second = await client.get(
        "/v1/redirects",
        params={"user_id": str(user.id), "limit": 2, "cursor": first_body["next_cursor"]},
        headers=auth_headers,
    )
    second_body = second.json()
    assert [item["id"] for item in second_body["data"]] == [str(hits[0].id)]
    assert second_body["next_cursor"] is None
