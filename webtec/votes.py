"""Vote bookkeeping for votable items.

Two ways of recording votes live here:

* ``apply_vote`` keeps the long-standing client contract. The caller sends the
  new total and the new voter list, and both are written verbatim with
  ``$set``. Replaying the same request leaves the same document, but two
  clients racing with different totals simply overwrite each other.
* ``toggle_vote`` computes the change on the server from the authenticated
  voter, so ``votedBy`` never holds a voter twice and ``votes`` is derived
  from its length. Both fields are written together in one compare-and-set
  update against the voter list that was read.
"""

from typing import Dict, List, Optional

from bson import ObjectId

from .documents import normalize_object_id_value

MAX_TOGGLE_ATTEMPTS = 5


class VoteConflictError(Exception):
    """The voter list kept changing underneath a toggle."""


class VoteLedger:
    def __init__(self, collection, allow_upsert: bool = True):
        self.collection = collection
        self.allow_upsert = allow_upsert

    @staticmethod
    def resolve_identifier(item_id) -> ObjectId:
        object_id = normalize_object_id_value(item_id)
        if object_id is None:
            raise ValueError("Invalid item identifier.")
        return object_id

    def apply_vote(self, item_id, vote_count: int, voted_by: List):
        return self.collection.update_one(
            {"_id": self.resolve_identifier(item_id)},
            {"$set": {"votes": vote_count, "votedBy": list(voted_by)}},
            upsert=self.allow_upsert,
        )

    def toggle_vote(self, item_id, voter: str) -> Optional[Dict]:
        identifier = self.resolve_identifier(item_id)

        for _ in range(MAX_TOGGLE_ATTEMPTS):
            document = self.collection.find_one({"_id": identifier}, {"votedBy": 1})
            if document is None:
                return None

            if "votedBy" in document:
                current = document["votedBy"]
                match = {"_id": identifier, "votedBy": current}
            else:
                current = []
                match = {"_id": identifier, "votedBy": {"$exists": False}}
            if not isinstance(current, list):
                current = []

            voters: List = []
            for existing in current:
                if existing not in voters:
                    voters.append(existing)
            voted = voter not in voters
            if voted:
                voters.append(voter)
            else:
                voters.remove(voter)

            result = self.collection.update_one(
                match, {"$set": {"votedBy": voters, "votes": len(voters)}}
            )
            if result.matched_count:
                return {"voted": voted, "votes": len(voters)}

        raise VoteConflictError("Too many concurrent votes on this item, try again.")
