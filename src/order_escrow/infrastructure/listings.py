"""In-memory listing reader.

The catalog is owned by another service; this reader serves snapshots from a
local mapping. With `allow_unknown=True` (simulation mode) any listing id
resolves to a placeholder so orders can be created without a catalog.
"""

from __future__ import annotations

from order_escrow.domain.collaborators import ListingSnapshot


class InMemoryListingReader:
    def __init__(
        self,
        listings: dict[str, ListingSnapshot] | None = None,
        allow_unknown: bool = False,
    ) -> None:
        self._listings = dict(listings or {})
        self._allow_unknown = allow_unknown

    def add(self, snapshot: ListingSnapshot) -> None:
        self._listings[snapshot.listing_id] = snapshot

    async def get_snapshot(self, listing_id: str) -> ListingSnapshot | None:
        snapshot = self._listings.get(listing_id)
        if snapshot is None and self._allow_unknown:
            return ListingSnapshot(listing_id=listing_id, title=f"Listing {listing_id}")
        return snapshot
