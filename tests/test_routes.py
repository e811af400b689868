"""HTTP tests for the receiving API."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from receiving_sync.core.config import settings
from receiving_sync.core.rate_limit import limiter
from receiving_sync.services.reconciliation_engine import ReconciliationEngine

API = "/api/shipments"


def shipment_body(shipment_id="SHIP-1", **overrides):
    body = {
        "id": shipment_id,
        "date": "2024-05-01",
        "documentIds": ["11111111"],
        "expectedItems": [
            {
                "itemNumber": "1000001",
                "description": "Chef's Knife 8in",
                "upc": "123",
                "qtyExpected": 100,
            },
        ],
    }
    body.update(overrides)
    return body


def scan(client, upc="123", qty=1, device="device-A", shipment_id="SHIP-1", **extra):
    body = {"upc": upc, "qtyReceived": qty, "deviceId": device, **extra}
    return client.post(f"{API}/{shipment_id}/received-items", json=body)


@pytest.fixture
def created(client: TestClient):
    response = client.put(f"{API}/SHIP-1", json=shipment_body())
    assert response.status_code == 200
    return response.json()["shipment"]


class TestShipmentRoutes:
    def test_put_creates_then_updates(self, client: TestClient):
        first = client.put(f"{API}/SHIP-1", json=shipment_body())
        second = client.put(f"{API}/SHIP-1", json=shipment_body())

        assert first.json()["success"] is True
        assert first.json()["created"] is True
        assert second.json()["created"] is False
        assert second.json()["shipment"]["createdAt"] == first.json()["shipment"]["createdAt"]

    def test_wire_format_is_camel_case(self, client: TestClient, created):
        assert created["id"] == "SHIP-1"
        assert created["status"] == "in-progress"
        assert created["documentIds"] == ["11111111"]
        assert created["completedAt"] is None
        assert created["expectedItems"][0] == {
            "itemNumber": "1000001",
            "legacyItemNumber": None,
            "description": "Chef's Knife 8in",
            "upc": "123",
            "qtyExpected": 100,
            "documentId": None,
        }

    def test_body_id_must_match_path(self, client: TestClient):
        response = client.put(f"{API}/SHIP-1", json=shipment_body("OTHER"))

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_input"

    def test_legacy_post(self, client: TestClient):
        response = client.post(API, json={"shipmentId": "LEGACY", "shipmentData": shipment_body("LEGACY")})

        assert response.status_code == 200
        assert response.json()["shipment"]["id"] == "LEGACY"

    def test_legacy_post_requires_data(self, client: TestClient):
        response = client.post(API, json={"shipmentId": "LEGACY"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_get(self, client: TestClient, created):
        response = client.get(f"{API}/SHIP-1")

        assert response.status_code == 200
        assert response.json()["shipment"]["id"] == "SHIP-1"

    def test_get_unknown_uses_error_envelope(self, client: TestClient):
        response = client.get(f"{API}/NOPE")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "not_found"
        assert "NOPE" in body["error"]

    def test_list_newest_first(self, client: TestClient):
        for shipment_id, created_at in (("old", 1000), ("new", 3000)):
            client.put(f"{API}/{shipment_id}", json=shipment_body(shipment_id, createdAt=created_at))

        response = client.get(API)

        assert [s["id"] for s in response.json()["shipments"]] == ["new", "old"]

    def test_complete(self, client: TestClient, created):
        response = client.post(f"{API}/SHIP-1/complete")

        shipment = response.json()["shipment"]
        assert shipment["status"] == "completed"
        assert shipment["completedAt"] is not None

    def test_complete_unknown(self, client: TestClient):
        assert client.post(f"{API}/NOPE/complete").status_code == 404

    def test_delete(self, client: TestClient, created):
        scan(client, qty=2)

        response = client.delete(f"{API}/SHIP-1")

        assert response.json() == {"success": True, "deleted": True}
        assert client.get(f"{API}/SHIP-1").status_code == 404
        assert client.get(f"{API}/SHIP-1/received-items").json()["receivedItems"] == []

    def test_delete_unknown_succeeds(self, client: TestClient):
        response = client.delete(f"{API}/NOPE")

        assert response.status_code == 200
        assert response.json()["deleted"] is False


class TestReceivedItemRoutes:
    def test_concurrent_devices_accumulate(self, client: TestClient, created):
        scan(client, qty=40, device="device-A", username="alice", name="Alice")
        response = scan(client, qty=30, device="device-B", username="bob", name="Bob")

        item = response.json()["item"]
        assert item["qtyReceived"] == 70
        assert item["qtyExpected"] == 100
        assert item["discrepancy"] == -30
        assert item["scannedBy"] == ["device-A", "device-B"]
        assert item["scannedByUsername"] == "bob"
        assert item["scannedByName"] == "Bob"

    def test_unexpected_upc_is_overage(self, client: TestClient, created):
        item = scan(client, upc="999", qty=5).json()["item"]

        assert item["qtyExpected"] == 0
        assert item["discrepancy"] == 5

    def test_retried_event_counts_once(self, client: TestClient, created):
        scan(client, qty=3, eventId="evt-1")
        retry = scan(client, qty=3, eventId="evt-1")

        assert retry.json()["duplicate"] is True
        assert retry.json()["item"]["qtyReceived"] == 3

    @pytest.mark.parametrize("qty", [0, -4])
    def test_bad_quantity(self, client: TestClient, created, qty):
        response = scan(client, qty=qty)

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_input"

    def test_wrong_type_is_validation_error(self, client: TestClient, created):
        response = scan(client, qty="lots")

        assert response.status_code == 422
        assert response.json()["success"] is False
        assert response.json()["code"] == "invalid_input"

    def test_missing_device(self, client: TestClient, created):
        response = client.post(f"{API}/SHIP-1/received-items", json={"upc": "123", "qtyReceived": 1})

        assert response.status_code == 400

    def test_scan_unknown_shipment(self, client: TestClient):
        assert scan(client, shipment_id="NOPE").status_code == 404

    def test_completed_shipment_rejects_writes(self, client: TestClient, created):
        scan(client, qty=5)
        client.post(f"{API}/SHIP-1/complete")

        responses = [
            scan(client, qty=1),
            client.put(f"{API}/SHIP-1/received-items", json={"upc": "123", "qtyReceived": 1}),
            client.post(
                f"{API}/SHIP-1/received-items/batch",
                json={"receivedItems": [{"upc": "123", "qtyReceived": 1}]},
            ),
        ]

        for response in responses:
            assert response.status_code == 409
            assert response.json()["code"] == "conflict"
        items = client.get(f"{API}/SHIP-1/received-items").json()["receivedItems"]
        assert items[0]["qtyReceived"] == 5

    def test_set_quantity(self, client: TestClient, created):
        scan(client, qty=8)

        response = client.put(f"{API}/SHIP-1/received-items", json={"upc": "123", "qtyReceived": 2})

        assert response.json()["item"]["qtyReceived"] == 2
        assert response.json()["item"]["scannedBy"] == ["device-A"]

    def test_batch_upload(self, client: TestClient, created):
        response = client.post(
            f"{API}/SHIP-1/received-items/batch",
            json={
                "receivedItems": [
                    {"upc": "123", "qtyReceived": 7, "scannedBy": ["device-C"]},
                    {"upc": "999", "qtyReceived": 1, "scannedByDevice": "device-C"},
                ]
            },
        )

        assert response.json() == {"success": True, "itemCount": 2}
        items = client.get(f"{API}/SHIP-1/received-items").json()["receivedItems"]
        assert [(i["upc"], i["qtyReceived"], i["scannedBy"]) for i in items] == [
            ("123", 7, ["device-C"]),
            ("999", 1, ["device-C"]),
        ]

    def test_sync_since_cursor(self, client: TestClient, created, fake_clock):
        scan(client, upc="123", qty=1)
        first = client.get(f"{API}/SHIP-1/received-items/sync", params={"lastSync": 0}).json()
        cursor = first["serverTime"]
        assert [i["upc"] for i in first["items"]] == ["123"]
        assert cursor == first["items"][0]["lastUpdated"]

        scan(client, upc="999", qty=1)
        second = client.get(f"{API}/SHIP-1/received-items/sync", params={"lastSync": cursor}).json()

        assert [i["upc"] for i in second["items"]] == ["999"]
        assert second["serverTime"] > cursor

    def test_sync_cursor_survives_frozen_clock(self, client: TestClient, created, monkeypatch):
        monkeypatch.setattr(
            "receiving_sync.services.reconciliation_engine.now_ms", lambda: 1_800_000_000_000
        )
        scan(client, upc="100", qty=1, device="device-A")
        cursor = client.get(f"{API}/SHIP-1/received-items/sync", params={"lastSync": 0}).json()["serverTime"]

        scan(client, upc="200", qty=1, device="device-B")
        second = client.get(f"{API}/SHIP-1/received-items/sync", params={"lastSync": cursor}).json()

        assert [i["upc"] for i in second["items"]] == ["200"]
        assert second["serverTime"] > cursor

    def test_sync_with_nothing_new_keeps_cursor(self, client: TestClient, created):
        response = client.get(f"{API}/SHIP-1/received-items/sync", params={"lastSync": 12345}).json()

        assert response["items"] == []
        assert response["serverTime"] == 12345

    def test_sync_with_garbage_cursor_returns_everything(self, client: TestClient, created):
        scan(client, qty=1)

        response = client.get(f"{API}/SHIP-1/received-items/sync", params={"lastSync": "abc"}).json()

        assert len(response["items"]) == 1

    def test_pull_unknown_shipment_is_empty(self, client: TestClient):
        response = client.get(f"{API}/NOPE/received-items")

        assert response.status_code == 200
        assert response.json()["receivedItems"] == []


class TestSummaryRoute:
    @pytest.fixture
    def scanned(self, client: TestClient, created):
        scan(client, upc="123", qty=70)
        scan(client, upc="999", qty=5)

    def test_totals_and_lines(self, client: TestClient, scanned):
        body = client.get(f"{API}/SHIP-1/summary").json()

        assert body["status"] == "in-progress"
        assert body["summary"]["totalExpected"] == 100
        assert body["summary"]["totalReceived"] == 75
        assert body["summary"]["totalDiscrepancy"] == -25
        assert body["summary"]["unexpectedCount"] == 1
        assert [(line["upc"], line["discrepancy"]) for line in body["lines"]] == [("123", -30), ("999", 5)]

    def test_filter_narrows_lines_only(self, client: TestClient, scanned):
        body = client.get(f"{API}/SHIP-1/summary", params={"filter": "shortages"}).json()

        assert [line["upc"] for line in body["lines"]] == ["123"]
        assert body["summary"]["lineCount"] == 2

    def test_combine_by_item(self, client: TestClient, scanned):
        body = client.get(f"{API}/SHIP-1/summary", params={"combineByItem": "true"}).json()

        knife = body["lines"][0]
        assert knife["itemNumber"] == "1000001"
        assert knife["documentId"] is None
        assert knife["qtyReceived"] == 70

    def test_unknown_filter(self, client: TestClient, scanned):
        response = client.get(f"{API}/SHIP-1/summary", params={"filter": "bogus"})

        assert response.status_code == 400

    def test_unknown_shipment(self, client: TestClient):
        assert client.get(f"{API}/NOPE/summary").status_code == 404


class TestManifestRoute:
    def test_parse(self, client: TestClient):
        text = "Packing List 12345678\n100234540508-217-9Chef's Knife 8in 40092640212116\n"

        response = client.post("/api/manifests/parse", json={"text": text})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["documentIds"] == ["12345678"]
        assert data["metadata"]["totalItems"] == 1
        assert data["metadata"]["totalQuantity"] == 6
        assert data["expectedItems"][0] == {
            "itemNumber": "1002345",
            "legacyItemNumber": "40508-217-9",
            "description": "Chef's Knife 8in",
            "upc": "4009264021211",
            "qtyExpected": 6,
            "documentId": "12345678",
        }

    def test_parsed_manifest_creates_shipment(self, client: TestClient):
        text = "Packing List 12345678\n100234540508-217-9Chef's Knife 8in 40092640212116\n"
        data = client.post("/api/manifests/parse", json={"text": text}).json()["data"]

        response = client.put(
            f"{API}/PARSED",
            json={"date": "2024-05-01", "documentIds": data["documentIds"], "expectedItems": data["expectedItems"]},
        )

        assert response.json()["shipment"]["expectedItems"][0]["qtyExpected"] == 6

    def test_no_items(self, client: TestClient):
        response = client.post("/api/manifests/parse", json={"text": "no items here"})

        assert response.status_code == 400
        assert response.json()["success"] is False


class TestErrorEnvelopes:
    def test_rate_limited_request_uses_envelope(self, client: TestClient):
        allowed = int(settings.write_rate_limit.split("/")[0])
        text = "Packing List 12345678\n100234540508-217-9Chef's Knife 8in 40092640212116\n"
        headers = {"X-Device-ID": "burst-device"}
        limiter.reset()
        limiter.enabled = True
        try:
            statuses = [
                client.post("/api/manifests/parse", json={"text": text}, headers=headers).status_code
                for _ in range(allowed)
            ]
            response = client.post("/api/manifests/parse", json={"text": text}, headers=headers)
        finally:
            limiter.enabled = False
            limiter.reset()

        assert 429 not in statuses
        assert response.status_code == 429
        assert response.json()["success"] is False
        assert response.json()["code"] == "rate_limited"

    def test_store_failure_carries_store_message(self, client: TestClient, created, monkeypatch):
        def locked(self, shipment_id):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(ReconciliationEngine, "pull_all", locked)

        response = client.get(f"{API}/SHIP-1/received-items")

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert response.json()["code"] == "store_failure"
        assert "database is locked" in response.json()["error"]


class TestHealth:
    @pytest.mark.parametrize("path", ["/health", "/api/health"])
    def test_health(self, client: TestClient, path):
        response = client.get(path)

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["checks"]["database"] == "healthy"
