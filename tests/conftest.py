from datetime import datetime, timedelta

import mongomock
import pytest

from webtec import create_app

TEST_CONFIG = {
    "TESTING": True,
    "PRODUCTION": False,
    "SESSION_SECRET": "test-signing-secret",
    "PAYMENT_SECRET_KEY": "sk_test_123",
    "PAYMENT_API_BASE": "https://payments.test",
}


@pytest.fixture
def database():
    return mongomock.MongoClient().webtecDb


@pytest.fixture
def app(database):
    return create_app(dict(TEST_CONFIG), database=database)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def product_fixture(database):
    """Twenty products, one minute apart, newest last."""
    base = datetime(2024, 1, 1, 12, 0, 0)
    tag_cycle = [["electronics", "gadgets"], ["home"], ["electronics-accessories"]]
    documents = []
    for index in range(20):
        documents.append(
            {
                "name": f"Product {index}",
                "tags": tag_cycle[index % len(tag_cycle)],
                "votes": 0,
                "votedBy": [],
                "timestamp": base + timedelta(minutes=index),
            }
        )
    database.products.insert_many(documents)
    return list(database.products.find())
