from fastapi.testclient import TestClient

def test_resolve_identifier_api(client: TestClient, users):
    body = client.get("/api/users/resolve/fb-manager").json()
    assert body == {"success": True, "data": {"id": users["manager"].id}}

def test_resolve_identifier_api_unknown(client: TestClient, users):
    body = client.get("/api/users/resolve/ghost@example.com").json()
    assert body["success"] is False
    assert "User not found" in body["error"]

def test_subordinates_api(client: TestClient, users):
    body = client.get(f"/api/users/{users['manager'].email}/subordinates").json()
    assert body["success"] is True
    assert {u["email"] for u in body["data"]} == {"lead@example.com", "worker@example.com"}

def test_can_assign_api(client: TestClient, users):
    allowed = client.get(f"/api/users/{users['manager'].id}/can-assign/worker@example.com").json()
    assert allowed["data"]["allowed"] is True
    denied = client.get(f"/api/users/{users['worker'].id}/can-assign/manager@example.com").json()
    assert denied["data"]["allowed"] is False

def test_link_external_api(client: TestClient, users):
    worker = users["worker"]
    body = client.post(f"/api/users/{worker.id}/link-external", json={"firebase_uid": "fb-worker"}).json()
    assert body["success"] is True
    assert body["data"]["firebase_uid"] == "fb-worker"
    resolved = client.get("/api/users/resolve/fb-worker").json()
    assert resolved["data"]["id"] == worker.id

def test_link_external_api_unknown_user(client: TestClient):
    body = client.post("/api/users/00000000-0000-4000-8000-000000000000/link-external", json={"firebase_uid": "x"}).json()
    assert body["success"] is False
