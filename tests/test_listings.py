import pytest
from bson import ObjectId

from webtec.listings import ListingQueryService


def newest_first(documents):
    return sorted(documents, key=lambda document: document["timestamp"], reverse=True)


def test_consecutive_pages_are_disjoint_and_ordered(database, product_fixture):
    listing = ListingQueryService(database.products)

    first_page = list(listing.list_items(page=0, page_size=10))
    second_page = list(listing.list_items(page=1, page_size=10))

    first_ids = {document["_id"] for document in first_page}
    second_ids = {document["_id"] for document in second_page}
    assert len(first_page) == len(second_page) == 10
    assert first_ids.isdisjoint(second_ids)
    assert [d["_id"] for d in first_page + second_page] == [
        d["_id"] for d in newest_first(product_fixture)
    ]


def test_page_size_zero_returns_everything(database, product_fixture):
    listing = ListingQueryService(database.products)

    assert len(list(listing.list_items(page=3, page_size=0))) == 20


def test_page_past_the_end_is_empty(database, product_fixture):
    listing = ListingQueryService(database.products)

    assert list(listing.list_items(page=4, page_size=10)) == []


def test_negative_paging_is_rejected(database):
    listing = ListingQueryService(database.products)

    with pytest.raises(ValueError):
        listing.list_items(page=-1, page_size=10)


def test_tag_filter_matches_whole_tags_only(database, product_fixture):
    listing = ListingQueryService(database.products)

    results = list(listing.list_items(page=0, page_size=0, tag_filter="electronics"))

    assert results
    assert all("electronics" in document["tags"] for document in results)
    expected = [d for d in product_fixture if "electronics" in d["tags"]]
    assert len(results) == len(expected)


def test_tag_filter_does_not_match_prefixes(database, product_fixture):
    listing = ListingQueryService(database.products)

    assert list(listing.list_items(0, 0, tag_filter="electr")) == []


@pytest.mark.parametrize("marker", ["", "undefined", "null", None])
def test_absence_markers_disable_filter(database, product_fixture, marker):
    listing = ListingQueryService(database.products)

    assert len(list(listing.list_items(0, 0, tag_filter=marker))) == 20


def test_count_ignores_filter(database, product_fixture):
    listing = ListingQueryService(database.products)

    filtered = list(listing.list_items(0, 0, tag_filter="home"))

    assert listing.count_items() == 20
    assert listing.count_matching("home") == len(filtered) < 20
    assert listing.count_matching("undefined") == 20


def test_insert_item_fills_vote_defaults(database):
    listing = ListingQueryService(database.trending)

    result = listing.insert_item({"name": "New", "tags": ["ai"], "_id": "client-id"})

    document = database.trending.find_one({"_id": result.inserted_id})
    assert isinstance(result.inserted_id, ObjectId)
    assert document["votes"] == 0
    assert document["votedBy"] == []
    assert document["timestamp"] is not None


def test_get_item_with_unknown_or_invalid_id_is_none(database, product_fixture):
    listing = ListingQueryService(database.products)

    assert listing.get_item(str(ObjectId())) is None
    assert listing.get_item("not-an-object-id") is None
    assert listing.get_item(str(product_fixture[0]["_id"]))["name"] == "Product 0"


def test_listing_endpoint_pages_and_filters(client, product_fixture):
    response = client.get("/allproducts", query_string={"page": 0, "size": 5, "search": "home"})

    assert response.status_code == 200
    items = response.get_json()
    assert len(items) == 5
    assert all("home" in item["tags"] for item in items)
    assert [item["name"] for item in items] == [
        "Product 19",
        "Product 16",
        "Product 13",
        "Product 10",
        "Product 7",
    ]
    assert items[0]["timestamp"] == "2024-01-01T12:19:00Z"


@pytest.mark.parametrize("query", [{"page": -1, "size": 10}, {"page": "one"}, {"size": "1.5"}])
def test_listing_endpoint_rejects_bad_paging(client, query):
    response = client.get("/allproducts", query_string=query)

    assert response.status_code == 400


def test_count_endpoints(client, product_fixture):
    assert client.get("/allproductcount").get_json() == {"productCount": 20}
    assert client.get("/allproductcount/filtered?search=home").get_json() == {
        "productCount": 7
    }
    assert client.get("/featuredcount").get_json() == {"featuredCount": 0}
    assert client.get("/trendingcount").get_json() == {"trendingCount": 0}


def test_item_endpoints(client, product_fixture):
    created = client.post("/featured", json={"name": "Spotlight", "tags": ["new"]}).get_json()

    assert created["acknowledged"] is True
    item = client.get(f"/featured/{created['insertedId']}").get_json()
    assert item["_id"] == created["insertedId"]
    assert item["name"] == "Spotlight"
    assert client.get(f"/featured/{ObjectId()}").get_json() is None
    assert client.get("/allproducts/not-an-id").get_json() is None


@pytest.mark.parametrize(
    "query",
    [
        {"page": 99999999999999999999, "size": 10},
        {"page": 2**62, "size": 10},
        {"page": 0, "size": 2**63},
    ],
)
def test_listing_endpoint_rejects_paging_beyond_int64(client, product_fixture, query):
    response = client.get("/allproducts", query_string=query)

    assert response.status_code == 400
    assert "message" in response.get_json()


def test_list_items_rejects_offset_overflow(database):
    listing = ListingQueryService(database.products)

    with pytest.raises(ValueError):
        listing.list_items(page=2**62, page_size=4)
