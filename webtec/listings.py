from datetime import datetime
from typing import Dict, Optional

from pymongo import DESCENDING

from .documents import normalize_object_id_value, normalize_tag_filter

MAX_INT64 = 2**63 - 1

LISTING_SORT = [("timestamp", DESCENDING), ("_id", DESCENDING)]


class ListingQueryService:
    """Read and append access to one collection of votable items.

    Listings are newest first. ``count_items`` deliberately ignores any tag
    filter so existing clients keep seeing the size of the whole collection;
    ``count_matching`` is the exact filtered count.
    """

    def __init__(self, collection):
        self.collection = collection

    @staticmethod
    def build_query(tag_filter: Optional[str] = None) -> Dict:
        tag = normalize_tag_filter(tag_filter)
        if tag is None:
            return {}
        # An equality match against an array field matches a whole element only.
        return {"tags": tag}

    def list_items(self, page: int = 0, page_size: int = 0, tag_filter=None):
        if page < 0 or page_size < 0:
            raise ValueError("Page and size must be non-negative integers.")
        # skip and limit are encoded as BSON int64.
        if page_size > MAX_INT64 or page * page_size > MAX_INT64:
            raise ValueError("Page and size are too large.")
        return (
            self.collection.find(self.build_query(tag_filter))
            .sort(LISTING_SORT)
            .skip(page * page_size)
            .limit(page_size)
        )

    def count_items(self) -> int:
        return self.collection.estimated_document_count()

    def count_matching(self, tag_filter=None) -> int:
        return self.collection.count_documents(self.build_query(tag_filter))

    def get_item(self, item_id):
        object_id = normalize_object_id_value(item_id)
        if object_id is None:
            return None
        return self.collection.find_one({"_id": object_id})

    def insert_item(self, fields: Dict):
        document = dict(fields)
        document.pop("_id", None)
        document.setdefault("timestamp", datetime.utcnow())
        document.setdefault("votes", 0)
        document.setdefault("votedBy", [])
        return self.collection.insert_one(document)
