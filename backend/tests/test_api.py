"""HTTP surface: routing, identity and error mapping."""

from __future__ import annotations

import json

from conftest import StubLLM, inventory_payload, matches_reply, stub_engine

from trackerhub.api import deps

OWNER = {"X-User-Id": "user-1"}
STRANGER = {"X-User-Id": "user-2"}


def _create_tracker(client) -> dict:
    response = client.post("/v1/trackers", json=inventory_payload().model_dump(), headers=OWNER)
    assert response.status_code == 201
    return response.json()


def test_requests_without_identity_are_rejected(client) -> None:
    response = client.get("/v1/trackers")

    assert response.status_code == 403
    assert response.json() == {"detail": "Authentication required"}


def test_tracker_and_row_endpoints(client) -> None:
    tracker = _create_tracker(client)
    tracker_id = tracker["id"]
    assert tracker["slug"] == "inventory"
    assert client.get("/v1/trackers/by-slug/inventory", headers=OWNER).json()["id"] == tracker_id

    created = client.post(f"/v1/trackers/{tracker_id}/rows", json={"data": {"sku": "A-1", "quantity": "5"}}, headers=OWNER)
    assert created.status_code == 201
    assert created.json()["data"] == {"sku": "A-1", "quantity": 5}

    duplicate = client.post(f"/v1/trackers/{tracker_id}/rows", json={"data": {"sku": "A-1"}}, headers=OWNER)
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"] == 'Row with sku "A-1" already exists'

    invalid = client.post(f"/v1/trackers/{tracker_id}/rows", json={"data": {"sku": "A-2", "quantity": "x"}}, headers=OWNER)
    assert invalid.status_code == 422
    assert invalid.json()["errors"] == [{"field": "quantity", "message": "Quantity must be a number"}]

    patched = client.patch(f"/v1/trackers/{tracker_id}/rows/A-1", json={"data": {"quantity": 6}}, headers=OWNER)
    assert patched.status_code == 200
    assert patched.json()["data"]["quantity"] == 6

    page = client.get(f"/v1/trackers/{tracker_id}/rows", params={"limit": 10}, headers=OWNER).json()
    assert page["total"] == 1
    assert page["rows"][0]["row_id"] == "A-1"

    export = client.get(f"/v1/trackers/{tracker_id}/export.csv", headers=OWNER)
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert 'filename="inventory-' in export.headers["content-disposition"]
    assert export.text.splitlines()[1] == "A-1,,6,,,"

    forbidden = client.get(f"/v1/trackers/{tracker_id}", headers=STRANGER)
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "Not authorized to access this tracker"

    assert client.delete(f"/v1/trackers/{tracker_id}/rows/A-1", headers=OWNER).status_code == 204
    assert client.get("/v1/trackers/missing", headers=OWNER).status_code == 404


def test_import_and_alias_endpoints(client) -> None:
    tracker_id = _create_tracker(client)["id"]

    imported = client.post(
        f"/v1/trackers/{tracker_id}/import",
        json={"rows": [{"sku": "12"}, {"quantity": 1}], "mode": "append"},
        headers=OWNER,
    ).json()
    assert imported["imported"] == 1
    assert imported["failed"] == [{"row": 2, "error": "SKU is required"}]

    from_csv = client.post(
        f"/v1/trackers/{tracker_id}/import/csv",
        json={"csv_content": "SKU,Quantity\n12,7\n13,8\n", "mode": "update"},
        headers=OWNER,
    ).json()
    assert (from_csv["imported"], from_csv["updated"]) == (1, 1)

    alias = client.post(
        f"/v1/trackers/{tracker_id}/aliases",
        json={"row_id": "12", "alias": "Green Dress"},
        headers=OWNER,
    )
    assert alias.status_code == 201
    assert alias.json()["alias"] == "green dress"

    clash = client.post(
        f"/v1/trackers/{tracker_id}/aliases",
        json={"row_id": "13", "alias": "green dress"},
        headers=OWNER,
    )
    assert clash.status_code == 409

    bulk = client.post(
        f"/v1/trackers/{tracker_id}/aliases/bulk",
        json={"aliases": [{"row_id": "13", "alias": "blue hat"}, {"row_id": "13", "alias": "13"}]},
        headers=OWNER,
    ).json()
    assert bulk["success"] == ["blue hat"]
    assert bulk["failed"][0]["reason"] == "Cannot create an alias that is the same as the row ID"

    grouped = client.get(f"/v1/trackers/{tracker_id}/aliases", headers=OWNER).json()
    assert sorted(grouped) == ["12", "13"]

    row_aliases = client.get(f"/v1/trackers/{tracker_id}/rows/13/aliases", headers=OWNER).json()
    assert [item["alias"] for item in row_aliases] == ["blue hat"]

    assert client.delete(f"/v1/aliases/{alias.json()['id']}", headers=STRANGER).status_code == 403
    assert client.delete(f"/v1/aliases/{alias.json()['id']}", headers=OWNER).status_code == 204


def test_inbox_to_approval_flow(app, client, api_env) -> None:
    tracker_id = _create_tracker(client)["id"]
    client.post(f"/v1/trackers/{tracker_id}/rows", json={"data": {"sku": "12", "quantity": 10}}, headers=OWNER)

    (api_env / "inbox.json").write_text(
        json.dumps(
            [
                {
                    "id": "msg-1",
                    "subject": "Inventory update",
                    "from": {"name": "Ops", "email": "ops@example.com"},
                    "date": 1726214400,
                    "body": "Quantity for SKU 12 changed to 40",
                }
            ]
        ),
        encoding="utf-8",
    )
    llm = StubLLM(
        default=matches_reply({"trackerId": tracker_id, "confidence": 0.9, "extractedData": {"sku": "12", "quantity": 40}})
    )
    app.dependency_overrides[deps.get_extraction_engine] = lambda: stub_engine(llm)

    processed = client.post("/v1/inbox/process", json={"email_count": 5}, headers=OWNER).json()
    assert processed["updates_created"] == 1
    assert processed["statistics"]["total_proposals"] == 1

    repeat = client.post("/v1/inbox/process", headers=OWNER).json()
    assert repeat["message"] == "No new emails since last check"

    page = client.get("/v1/updates", headers=OWNER).json()
    assert page["total"] == 1
    update = page["updates"][0]
    assert update["proposals"][0]["row_id"] == "12"

    stats = client.get("/v1/updates/stats", headers=OWNER).json()
    assert stats["pending"] == 1
    assert stats["unread"] == 1

    assert client.post("/v1/updates/viewed", headers=OWNER).json() == {"count": 1}

    approved = client.post(f"/v1/updates/{update['id']}/approve", headers=OWNER)
    assert approved.status_code == 200
    assert approved.json()["results"] == [{"tracker_id": tracker_id, "row_id": "12", "success": True, "error": None}]

    row = client.get(f"/v1/trackers/{tracker_id}/rows", headers=OWNER).json()["rows"][0]
    assert row["data"]["quantity"] == 40

    again = client.post(f"/v1/updates/{update['id']}/reject", headers=OWNER)
    assert again.status_code == 409
    assert again.json()["detail"] == "Update has already been processed"

    archived = client.get("/v1/updates", params={"view_mode": "archived"}, headers=OWNER).json()
    assert archived["total"] == 1
    assert archived["updates"][0]["approved"] is True
