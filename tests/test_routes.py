#!/usr/bin/env python3
"""
HTTP tests for the marketplace API routes
"""

from datetime import timedelta

import pytest

from api import dependencies
from api.app import app
from api.config import get_settings
from api.database import _utcnow
from api.models.user import CachedUser
from api.services import listings as listings_module
from api.services.subgraph import SubgraphError, SubgraphRateLimitError

SELLER = "0x" + "a" * 40
CURATOR = "0x" + "c" * 40
OTHER = "0x" + "5" * 40


@pytest.fixture
def fast_retries(monkeypatch):
    """Keep the listing retry loop but without real backoff delays"""
    original = listings_module.retry_with_backoff

    def no_delay(fn, max_retries=3, initial_delay=1.0):
        return original(fn, max_retries=max_retries, initial_delay=0)

    monkeypatch.setattr(listings_module, "retry_with_backoff", no_delay)


@pytest.fixture
def secrets(monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "cron_secret", "cron-token")
    monkeypatch.setattr(settings, "admin_secret", "admin-token")
    return settings


class TestHealth:

    def test_root(self, client):
        body = client.get("/").json()
        assert body["status"] == "running"
        assert body["mock_mode"] is True

    def test_health_in_mock_mode(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == "not_required"


class TestAuctionRoutes:

    def test_active_auctions(self, client, subgraph, listing_factory):
        subgraph.active = [listing_factory(1), listing_factory(2, status="CANCELLED")]

        response = client.get("/api/auctions/active", params={"enrich": "false"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["count"] == 1
        assert body["subgraphDown"] is False

    def test_active_auctions_survive_subgraph_outage(self, client, subgraph, subgraph_down):
        subgraph.error = subgraph_down

        response = client.get("/api/auctions/active")

        assert response.status_code == 200
        body = response.json()
        assert body["auctions"] == []
        assert body["subgraphDown"] is True
        assert "503" in body["error"]

    def test_auction_detail(self, client, subgraph, listing_factory):
        subgraph.listings["5"] = listing_factory(5, listingType=2, lazy=False)

        response = client.get("/api/auctions/5")

        assert response.status_code == 200
        listing = response.json()["listing"]
        assert listing["listingId"] == "5"
        assert listing["listingType"] == "FIXED_PRICE"
        assert listing["bidCount"] == 0

    def test_auction_not_found(self, client):
        response = client.get("/api/auctions/999")
        assert response.status_code == 404
        assert response.json()["detail"] == "Auction not found"

    def test_auction_rate_limited(self, client, subgraph, fast_retries):
        subgraph.error = SubgraphRateLimitError("Subgraph rate limit exceeded (429)", status=429)

        response = client.get("/api/auctions/5")

        assert response.status_code == 429
        # One attempt plus three retries
        assert subgraph.calls.count("get_listing") == 4

    def test_auction_subgraph_error(self, client, subgraph):
        subgraph.error = SubgraphError("Subgraph HTTP 500", status=500)
        assert client.get("/api/auctions/5").status_code == 502

    def test_by_seller(self, client, subgraph, listing_factory):
        subgraph.browse = [listing_factory(1), listing_factory(2, seller=OTHER), listing_factory(3, status="CANCELLED")]

        response = client.get(f"/api/auctions/by-seller/{SELLER}", params={"enrich": "false"})

        assert response.status_code == 200
        assert [a["listingId"] for a in response.json()["auctions"]] == ["1"]

    def test_by_seller_invalid_address(self, client):
        response = client.get("/api/auctions/by-seller/not-an-address")
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid address format"

    def test_with_bids(self, client, subgraph, listing_factory):
        bidder = "0x" + "b" * 40
        listing = listing_factory(3)
        subgraph.bids = [
            {"id": "b2", "bidder": bidder, "amount": "700", "timestamp": "1700000200", "listing": listing},
            {"id": "b1", "bidder": bidder, "amount": "600", "timestamp": "1700000100", "listing": listing},
        ]

        response = client.get(f"/api/auctions/with-bids/{bidder}")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["count"] == 1
        assert body["auctions"][0]["currentPrice"] == "700"
        assert body["auctions"][0]["bidCount"] == 2

    def test_with_bids_invalid_address(self, client):
        response = client.get("/api/auctions/with-bids/0x123")
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid bidder address"

    def test_with_bids_subgraph_error(self, client, subgraph, subgraph_down):
        subgraph.error = subgraph_down
        response = client.get("/api/auctions/with-bids/" + "0x" + "b" * 40)
        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["auctions"] == []
        assert "503" in body["error"]


class TestListingRoutes:

    def test_browse_pagination(self, client, subgraph, listing_factory):
        subgraph.browse = [listing_factory(i) for i in range(1, 6)]

        first_page = client.get("/api/listings/browse", params={"first": 2, "enrich": "false"})
        last_page = client.get("/api/listings/browse", params={"first": 2, "skip": 4, "enrich": "false"})

        assert first_page.status_code == 200
        assert first_page.json()["count"] == 2
        assert first_page.json()["pagination"] == {"first": 2, "skip": 0, "hasMore": True}
        assert first_page.headers["Cache-Control"] == "public, s-maxage=300, stale-while-revalidate=120"
        assert last_page.json()["count"] == 1
        assert last_page.json()["pagination"]["hasMore"] is False

    def test_browse_filtered_page_has_no_more(self, client, subgraph, listing_factory):
        subgraph.browse = [listing_factory(1), listing_factory(2, status="CANCELLED"), listing_factory(3)]

        body = client.get("/api/listings/browse", params={"first": 3, "enrich": "false"}).json()

        # The subgraph page was full but filtering shortened it
        assert body["count"] == 2
        assert body["pagination"]["hasMore"] is False

    def test_browse_page_size_is_capped(self, client, subgraph):
        body = client.get("/api/listings/browse", params={"first": 1000, "enrich": "false"}).json()
        assert body["pagination"]["first"] == 100

    def test_browse_no_cache(self, client):
        response = client.get("/api/listings/browse", params={"noCache": "true", "enrich": "false"})
        assert response.headers["Cache-Control"] == "no-store, must-revalidate"

    def test_browse_subgraph_down(self, client, subgraph, subgraph_down):
        subgraph.error = subgraph_down

        response = client.get("/api/listings/browse")

        assert response.status_code == 200
        assert response.json()["subgraphDown"] is True
        assert response.json()["listings"] == []
        assert response.headers["Cache-Control"] == "no-store, must-revalidate"

    def test_recently_concluded(self, client, subgraph, listing_factory):
        subgraph.concluded = [listing_factory(7, status="FINALIZED", finalized=True)]

        body = client.get("/api/listings/recently-concluded", params={"enrich": "false"}).json()

        assert body["success"] is True
        assert body["count"] == 1

    def test_recently_concluded_error(self, client, subgraph, subgraph_down):
        subgraph.error = subgraph_down
        response = client.get("/api/listings/recently-concluded")
        assert response.status_code == 500
        assert response.json()["success"] is False


    def test_purchases_grouped_by_buyer(self, client, subgraph):
        buyer = "0x" + "1" * 40
        subgraph.purchases["9"] = [
            {"id": "p2", "buyer": buyer, "count": 2, "amount": "10", "timestamp": "1700000200", "transactionHash": "0x2"},
            {"id": "p1", "buyer": buyer, "count": 1, "amount": "10", "timestamp": "1700000100", "transactionHash": "0x1"},
        ]

        response = client.get("/api/listings/9/purchases")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "public, s-maxage=60, stale-while-revalidate=120"
        buyers = response.json()["buyers"]
        assert len(buyers) == 1
        assert buyers[0]["address"] == buyer
        assert buyers[0]["totalCount"] == 3
        assert buyers[0]["firstPurchase"] == "1700000100"
        assert buyers[0]["fid"] is None

    def test_purchases_empty(self, client):
        response = client.get("/api/listings/10/purchases")
        assert response.status_code == 200
        assert response.json() == {"buyers": []}

    def test_purchases_subgraph_error(self, client, subgraph, subgraph_down):
        subgraph.error = subgraph_down
        response = client.get("/api/listings/9/purchases")
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch purchases"}


class TestCurationRoutes:

    @pytest.fixture
    def gallery(self, client, subgraph, listing_factory):
        subgraph.listings.update({"1": listing_factory(1), "2": listing_factory(2)})
        response = client.post("/api/curation", json={"userAddress": CURATOR, "title": "Weekend Picks"})
        assert response.status_code == 200
        return response.json()["gallery"]

    def test_create_gallery(self, gallery):
        assert gallery["slug"] == "weekend-picks"
        assert gallery["curatorAddress"] == CURATOR
        assert gallery["isPublished"] is False

    def test_create_requires_valid_address(self, client):
        response = client.post("/api/curation", json={"userAddress": "0x123", "title": "Picks"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid address format"

    def test_list_requires_user_address(self, client):
        assert client.get("/api/curation").status_code == 400

    def test_list_galleries(self, client, gallery):
        body = client.get("/api/curation", params={"userAddress": CURATOR}).json()
        assert [g["id"] for g in body["galleries"]] == [gallery["id"]]

    def test_items_and_visibility(self, client, gallery):
        gallery_id = gallery["id"]
        added = client.post(f"/api/curation/{gallery_id}/items",
                            json={"userAddress": CURATOR, "listingIds": ["2", "1", "404"]}).json()
        assert added["added"] == 2
        assert added["skipped"] == 1

        # Drafts are hidden from everyone but the curator
        assert client.get(f"/api/curation/{gallery_id}").status_code == 404
        own_view = client.get(f"/api/curation/{gallery_id}", params={"userAddress": CURATOR}).json()["gallery"]
        assert [l["listingId"] for l in own_view["listings"]] == ["2", "1"]

        published = client.patch(f"/api/curation/{gallery_id}", json={"userAddress": CURATOR, "isPublished": True})
        assert published.json()["gallery"]["isPublished"] is True

        public = client.get(f"/api/curation/user/{CURATOR}/gallery/weekend-picks")
        assert public.status_code == 200
        assert public.json()["gallery"]["itemCount"] == 2

        removed = client.delete(f"/api/curation/{gallery_id}/items",
                                params={"userAddress": CURATOR, "listingId": "2"})
        assert removed.json() == {"success": True}
        missing = client.delete(f"/api/curation/{gallery_id}/items",
                                params={"userAddress": CURATOR, "listingId": "2"})
        assert missing.status_code == 404

    def test_add_items_validates_body(self, client, gallery):
        response = client.post(f"/api/curation/{gallery['id']}/items",
                               json={"userAddress": CURATOR, "listingIds": []})
        assert response.status_code == 422

    def test_remove_item_requires_params(self, client, gallery):
        response = client.delete(f"/api/curation/{gallery['id']}/items", params={"userAddress": CURATOR})
        assert response.status_code == 400

    def test_other_users_cannot_modify(self, client, gallery):
        response = client.patch(f"/api/curation/{gallery['id']}", json={"userAddress": OTHER, "title": "Mine now"})
        assert response.status_code == 403
        response = client.delete(f"/api/curation/{gallery['id']}", params={"userAddress": OTHER})
        assert response.status_code == 403

    def test_delete_gallery(self, client, gallery):
        response = client.delete(f"/api/curation/{gallery['id']}", params={"userAddress": CURATOR})
        assert response.json() == {"success": True}
        assert client.get(f"/api/curation/{gallery['id']}", params={"userAddress": CURATOR}).status_code == 404

    def test_gallery_by_slug(self, client, gallery):
        params = {"curatorAddress": CURATOR}
        assert client.get("/api/curation/slug/weekend-picks", params=params).status_code == 404

        own = client.get("/api/curation/slug/weekend-picks", params={**params, "userAddress": CURATOR})
        assert own.status_code == 200
        assert own.json()["gallery"]["id"] == gallery["id"]

        client.patch(f"/api/curation/{gallery['id']}", json={"userAddress": CURATOR, "isPublished": True})
        public = client.get("/api/curation/slug/weekend-picks", params=params)
        assert public.status_code == 200
        assert public.json()["gallery"]["title"] == "Weekend Picks"

    def test_gallery_by_slug_requires_curator(self, client):
        response = client.get("/api/curation/slug/weekend-picks")
        assert response.status_code == 400
        assert response.json()["detail"] == "curatorAddress is required"

        response = client.get("/api/curation/slug/weekend-picks", params={"curatorAddress": "0x123"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid address format"

    def test_malformed_gallery_id_is_not_found(self, client):
        response = client.get("/api/curation/not-a-uuid", params={"userAddress": CURATOR})
        assert response.status_code == 404
        assert response.json()["detail"] == "Gallery not found"

        response = client.patch("/api/curation/not-a-uuid", json={"userAddress": CURATOR, "title": "New"})
        assert response.status_code == 404


class TestUserRoutes:

    def test_invalid_address(self, client):
        assert client.get("/api/user/0x123").status_code == 400

    def test_cached_user(self, client, provider):
        wallet = "0x" + "1" * 40
        provider.user_cache[wallet] = CachedUser(
            eth_address=wallet, fid=42, username="alice", expires_at=_utcnow() + timedelta(days=1)
        )

        body = client.get(f"/api/user/{wallet.upper().replace('0X', '0x')}").json()

        assert body["found"] is True
        assert body["address"] == wallet
        assert body["user"]["username"] == "alice"
        assert body["user"]["source"] == "cached"

    def test_cache_only_miss(self, client):
        body = client.get("/api/user/" + "0x" + "2" * 40, params={"cacheOnly": "true"}).json()
        assert body == {"address": "0x" + "2" * 40, "found": False, "user": None}


class TestSocialRoutes:

    def test_top_patrons_empty(self, client):
        body = client.get("/api/social/top-patrons", params={"limit": 1000}).json()
        assert body["patrons"] == []
        assert body["pagination"]["limit"] == 500

    def test_creator_patrons(self, client, provider):
        provider.patronships.append({
            "collector_fid": 1, "creator_fid": 10, "total_spent": "2000", "items_owned": 1,
            "market_purchases": 1, "gallery_purchases": 0, "patron_tier": "supporter",
        })

        body = client.get("/api/social/creator/10/patrons").json()

        assert body["creator"] == {"fid": 10}
        assert [p["fid"] for p in body["patrons"]] == [1]
        assert body["summary"]["totalRevenue"] == "2000"

    def test_creator_patrons_invalid_fid(self, client):
        response = client.get("/api/social/creator/abc/patrons")
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid creator FID"

    def test_recent_auctions_empty(self, client):
        body = client.get("/api/social/recent-auctions").json()
        assert body["auctions"] == []
        assert body["pagination"] == {"total": 0, "limit": 50, "offset": 0, "hasMore": False}

    def test_sync_requires_secret(self, client, secrets):
        assert client.get("/api/social/sync/auction-completions").status_code == 401
        response = client.get("/api/social/sync/auction-completions", headers={"Authorization": "Bearer wrong"})
        assert response.status_code == 401

    def test_sync_without_configured_secret_is_refused(self, client, monkeypatch):
        monkeypatch.setattr(get_settings(), "cron_secret", None)
        monkeypatch.setattr(get_settings(), "admin_secret", None)
        assert client.get("/api/social/sync/auction-completions").status_code == 401

    @pytest.mark.parametrize("token", ["cron-token", "admin-token"])
    def test_sync_with_secret(self, client, subgraph, secrets, token):
        response = client.get("/api/social/sync/auction-completions", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["message"] == "No new completed auctions to sync"
        assert subgraph.calls == ["get_completed_auctions"]

    def test_sync_failure(self, client, subgraph, secrets, subgraph_down):
        subgraph.error = subgraph_down
        response = client.get("/api/social/sync/auction-completions", headers={"Authorization": "Bearer cron-token"})
        assert response.status_code == 500
        assert response.json()["error"] == "Failed to sync auction completions"


class TestActivityRoutes:

    def test_recent_collectors(self, client, subgraph):
        subgraph.recent_purchases = [{"buyer": OTHER, "timestamp": "2"}, {"buyer": OTHER, "timestamp": "1"}]
        body = client.get("/api/users/recent-collectors").json()
        assert body["success"] is True
        assert body["count"] == 1
        assert body["collectors"][0]["address"] == OTHER

    def test_recent_bidders(self, client, subgraph):
        subgraph.recent_bids = [{"bidder": SELLER, "timestamp": "2"}]
        body = client.get("/api/users/recent-bidders", params={"first": 3}).json()
        assert [b["address"] for b in body["bidders"]] == [SELLER]

    def test_recent_artists_empty(self, client):
        body = client.get("/api/users/recent-artists").json()
        assert body == {"success": True, "artists": [], "count": 0}

    @pytest.mark.parametrize("path, key", [
        ("recent-collectors", "collectors"),
        ("recent-bidders", "bidders"),
        ("recent-artists", "artists"),
    ])
    def test_subgraph_errors(self, client, subgraph, subgraph_down, path, key):
        subgraph.error = subgraph_down
        response = client.get(f"/api/users/{path}")
        assert response.status_code == 500
        assert response.json()["success"] is False
        assert response.json()[key] == []


class TestCronRoutes:

    def test_cleanup_without_secret(self, client, monkeypatch):
        monkeypatch.setattr(get_settings(), "cron_secret", None)
        body = client.get("/api/cron/cleanup-cache").json()
        assert body["success"] is True
        assert body["totalDeleted"] == 0

    def test_cleanup_with_secret(self, client, secrets):
        assert client.get("/api/cron/cleanup-cache").status_code == 401
        response = client.get("/api/cron/cleanup-cache", headers={"Authorization": "Bearer cron-token"})
        assert response.status_code == 200


class TestCollectionRoutes:

    @pytest.fixture
    def unified(self):
        class FakeUnified:
            calls = []

            async def get_sales_options(self, nft, chain_id):
                self.calls.append((nft, chain_id))
                return {"collectionAddress": nft, "chainId": chain_id, "hasAnySales": False}

        fake = FakeUnified()
        app.dependency_overrides[dependencies.get_unified_sales] = lambda: fake
        return fake

    def test_sales_for_collection(self, client, unified):
        nft = "0x" + "D" * 40
        body = client.get(f"/api/collections/{nft}/sales", params={"chainId": 8453}).json()
        assert body["collectionAddress"] == nft.lower()
        assert unified.calls == [(nft.lower(), 8453)]

    def test_invalid_collection_address(self, client, unified):
        assert client.get("/api/collections/nope/sales").status_code == 400
