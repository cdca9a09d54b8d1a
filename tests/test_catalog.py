import pytest

import catalog
from errors import UpstreamFailure


@pytest.mark.parametrize("prices,low,high,expected", [
    ([1000, 5000], 0, 4000, False),
    ([1000, 3000], 0, 4000, True),
    ([1000, 5000], 4500, None, True),
    ([1000, 2000], 4500, None, False),
    ([1000, 5000], None, 1500, True),
    ([2000], None, 1500, False),
    ([], 0, 100000, False),
])
def test_matches_price_range(prices, low, high, expected):
    assert catalog.matches_price_range(prices, low, high) is expected


def test_slugify():
    assert catalog.slugify("The Great Wave, off Kanagawa!") == "the-great-wave-off-kanagawa"


def test_price_filter_requires_full_containment(client, make_poster):
    make_poster(title="Cheap", prices=(500, 1500))
    make_poster(title="Wide", prices=(1000, 5000))
    make_poster(title="Bare", prices=())

    res = client.get("/api/posters", params={"minPrice": 0, "maxPrice": 4000})
    body = res.json()
    assert [p["title"] for p in body["data"]] == ["Cheap"]
    assert body["pagination"]["total"] == 1
    assert body["pagination"]["totalPages"] == 1


def test_listing_paginates_and_sorts(client, make_poster):
    for title in ["B", "A", "C"]:
        make_poster(title=title)
    res = client.get("/api/posters", params={"sortBy": "title", "sortOrder": "asc", "limit": 2, "page": 2})
    body = res.json()
    assert [p["title"] for p in body["data"]] == ["C"]
    assert body["pagination"] == {"page": 2, "limit": 2, "total": 3, "totalPages": 2}
    assert body["data"][0]["sizes"][0]["name"] == "Small"


def test_listing_filters(client, make_poster, db):
    cat_id = str(db["category"].insert_one({"name": "Impressionism", "slug": "impressionism", "is_active": True}).inserted_id)
    make_poster(title="Water Lilies", artist="Claude Monet", is_featured=True, category_id=cat_id)
    make_poster(title="Composition", artist="Piet Mondrian")
    make_poster(title="Hidden", status="draft")

    titles = lambda r: sorted(p["title"] for p in r.json()["data"])  # noqa: E731
    assert titles(client.get("/api/posters")) == ["Composition", "Water Lilies"]
    assert titles(client.get("/api/posters", params={"search": "MONET"})) == ["Water Lilies"]
    assert titles(client.get("/api/posters", params={"featured": "true"})) == ["Water Lilies"]
    assert titles(client.get("/api/posters", params={"category": "impressionism"})) == ["Water Lilies"]
    res = client.get("/api/posters", params={"category": cat_id})
    assert res.json()["data"][0]["category"]["slug"] == "impressionism"
    assert client.get("/api/posters", params={"search": "(["}).status_code == 200


def test_invalid_sort_field(client):
    res = client.get("/api/posters", params={"sortBy": "password"})
    assert res.status_code == 400
    assert "error" in res.json()


def test_detail_counts_views(client, make_poster):
    poster = make_poster()
    client.get(f"/api/posters/{poster['id']}")
    res = client.get(f"/api/posters/{poster['id']}")
    assert res.status_code == 200
    assert res.json()["data"]["views_count"] == 2


def test_detail_not_found(client, make_poster):
    draft = make_poster(status="draft")
    res = client.get(f"/api/posters/{draft['id']}")
    assert res.status_code == 404
    assert res.json() == {"error": "Poster not found"}
    assert client.get("/api/posters/not-an-id").status_code == 400


def test_admin_guard(client, user_headers):
    payload = {"title": "New", "artist": "Someone"}
    assert client.post("/api/posters", json=payload).status_code == 401
    assert client.post("/api/posters", json=payload, headers={"Authorization": "Bearer junk"}).status_code == 401
    assert client.post("/api/posters", json=payload, headers=user_headers).status_code == 403


def test_admin_poster_lifecycle(client, admin_headers, db):
    payload = {
        "title": "Night Cafe",
        "artist": "Vincent van Gogh",
        "sizes": [
            {"name": "Small", "dimensions": "A4", "price": 799},
            {"name": "Large", "dimensions": "A2", "price": 1999},
        ],
    }
    res = client.post("/api/posters", json=payload, headers=admin_headers)
    assert res.status_code == 201
    poster = res.json()["data"]
    assert poster["slug"] == "night-cafe"
    assert len(poster["sizes"]) == 2

    res = client.put(
        f"/api/posters/{poster['id']}",
        json={"title": "The Night Cafe", "sizes": [{"name": "Medium", "dimensions": "A3", "price": 1299}]},
        headers=admin_headers,
    )
    assert res.status_code == 200
    updated = res.json()["data"]
    assert updated["slug"] == "the-night-cafe"
    assert [s["name"] for s in updated["sizes"]] == ["Medium"]

    res = client.put(f"/api/posters/{poster['id']}", json={"is_featured": True}, headers=admin_headers)
    assert len(res.json()["data"]["sizes"]) == 1

    assert client.delete(f"/api/posters/{poster['id']}", headers=admin_headers).status_code == 200
    assert db["postersize"].count_documents({}) == 0
    assert client.delete(f"/api/posters/{poster['id']}", headers=admin_headers).status_code == 404


def test_poster_create_rolls_back_on_size_failure(monkeypatch, db):
    def boom(*args, **kwargs):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(catalog, "insert_documents", boom)
    with pytest.raises(UpstreamFailure):
        catalog.create_poster({"title": "X", "artist": "Y", "sizes": [{"name": "S", "dimensions": "A4", "price": 1}]})
    assert db["poster"].count_documents({}) == 0


def test_categories(client, admin_headers, db):
    res = client.post("/api/categories", json={"name": "Botanical", "slug": "botanical"}, headers=admin_headers)
    assert res.status_code == 201
    cat_id = res.json()["data"]["id"]
    assert client.post("/api/categories", json={"name": "Dup", "slug": "botanical"}, headers=admin_headers).status_code == 400
    assert [c["slug"] for c in client.get("/api/categories").json()["data"]] == ["botanical"]

    db["poster"].insert_one({"title": "Fern", "category_id": cat_id, "status": "active"})
    assert client.delete(f"/api/categories/{cat_id}", headers=admin_headers).status_code == 200
    assert db["poster"].find_one({"title": "Fern"})["category_id"] is None
