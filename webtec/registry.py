from typing import Dict, Optional

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from .documents import normalize_email


class UserRegistry:
    """Users and their subscription status, keyed by email."""

    def __init__(self, collection):
        self.collection = collection

    def ensure_indexes(self) -> None:
        self.collection.create_index([("email", ASCENDING)], unique=True)

    def create_user(self, email: Optional[str], fields: Dict) -> Dict:
        """Insert a user unless the email is already registered.

        The unique ``email`` index makes concurrent registrations for the same
        address produce exactly one record. The lookup keeps sequential
        registrations deduplicated even when that index could not be built.
        """
        normalized_email = normalize_email(email)
        if not normalized_email:
            raise ValueError("An email address is required.")

        if self.collection.find_one({"email": normalized_email}, {"_id": 1}):
            return {"created": False, "id": None}

        document = dict(fields)
        document.pop("_id", None)
        document["email"] = normalized_email
        try:
            result = self.collection.insert_one(document)
        except DuplicateKeyError:
            return {"created": False, "id": None}
        return {"created": True, "id": result.inserted_id}

    def update_subscription_status(self, email: Optional[str], status):
        normalized_email = normalize_email(email)
        if not normalized_email:
            raise ValueError("An email address is required.")
        return self.collection.update_one(
            {"email": normalized_email},
            {"$set": {"status": status}},
            upsert=True,
        )

    def list_users(self):
        return self.collection.find()

    def find_user(self, email: Optional[str]):
        normalized_email = normalize_email(email)
        if not normalized_email:
            return None
        return self.collection.find_one({"email": normalized_email})
