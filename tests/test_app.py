import pytest
from fastapi.testclient import TestClient

from catalogo.main import create_app

from fakes import missing_backend_gate

ADMIN = {"Authorization": "Bearer admin-token"}


@pytest.fixture
def client(gate):
    with TestClient(create_app(gate=gate), raise_server_exceptions=False) as c:
        yield c


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "OK"
    assert body["environment"]
    assert body["backend"] in ("initializing", "ready")


@pytest.mark.parametrize("path,marker", [
    ("/", "Inicio"),
    ("/catalogo", "Catálogo"),
    ("/admin", "Ingresar"),
    ("/admin/dashboard", "Dashboard"),
    ("/detalledepartamentos.html", "Detalle"),
])
def test_pages(client, path, marker):
    r = client.get(path)
    assert r.status_code == 200
    assert marker in r.text
    assert "Content-Security-Policy" in r.headers


def test_legacy_redirect(client):
    r = client.get("/interfazprincipal.html", follow_redirects=False)
    assert r.status_code in (302, 307)
    assert r.headers["location"] == "/"


def test_unknown_page_serves_404_html(client):
    r = client.get("/no-existe")
    assert r.status_code == 404
    assert "Página no encontrada" in r.text


def test_unknown_api_path_is_json_404(client):
    r = client.get("/api/nada")
    assert r.status_code == 404
    assert r.json()["detail"]


def test_list_properties_from_query_string(client):
    r = client.get("/api/properties", params={"propertyType": "Casa", "sortBy": "price:asc", "district": "all"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert [row["id"] for row in body["data"]] == [1, 42]
    assert "error" not in body


def test_offset_without_limit_is_400(client):
    r = client.get("/api/properties", params={"offset": 10})
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_filter"


def test_property_detail_and_similar(client):
    assert client.get("/api/properties/42").json()["data"]["title"] == "Casa en Miraflores"
    r = client.get("/api/properties/42/similar", params={"property_type": "Casa", "district": "Miraflores"})
    assert 42 not in [row["id"] for row in r.json()["data"]]


def test_missing_property_is_404(client):
    r = client.get("/api/properties/999")
    assert r.status_code == 404
    assert r.json()["success"] is False


def test_featured_and_stats(client):
    assert [row["id"] for row in client.get("/api/properties/featured").json()["data"]] == [1]
    assert client.get("/api/stats").json()["data"]["totalProperties"] == 4


def test_create_inquiry(client, fake_client):
    r = client.post("/api/inquiries", json={"name": "Eva", "email": "eva@example.com", "message": "Hola", "property_id": 1})
    assert r.status_code == 201
    assert r.json()["data"]["status"] == "new"


def test_admin_requires_token(client):
    assert client.get("/api/admin/properties").status_code == 401
    assert client.get("/api/admin/properties", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_admin_crud(client, fake_client):
    r = client.post("/api/admin/properties", headers=ADMIN, json={"title": "Terreno en Pachacamac", "price": 37600})
    assert r.status_code == 201
    created = r.json()["data"]
    assert created["price_usd"] == 10000

    r = client.put(f"/api/admin/properties/{created['id']}", headers=ADMIN, json={"status": "inactive"})
    assert r.json()["data"]["status"] == "inactive"

    # inactive listings drop out of the public catalog
    public_ids = [row["id"] for row in client.get("/api/properties").json()["data"]]
    assert created["id"] not in public_ids

    assert client.delete(f"/api/admin/properties/{created['id']}", headers=ADMIN).status_code == 200
    assert client.get(f"/api/admin/properties/{created['id']}", headers=ADMIN).status_code == 404


def test_admin_stats_and_inquiries(client):
    stats = client.get("/api/admin/stats", headers=ADMIN).json()["data"]
    assert stats["total"] == 5
    inquiries = client.get("/api/admin/inquiries", headers=ADMIN, params={"property_id": 42}).json()["data"]
    assert [row["id"] for row in inquiries] == [2]
    r = client.patch("/api/admin/inquiries/2", headers=ADMIN, json={"status": "responded"})
    assert r.json()["data"]["status"] == "responded"


def test_admin_image_upload(client, fake_client):
    r = client.post(
        "/api/admin/images", headers=ADMIN,
        files={"file": ("sala.jpg", b"\xff\xd8\xff", "image/jpeg")},
    )
    assert r.status_code == 201
    path = r.json()["data"]["path"]
    assert client.delete("/api/admin/images", headers=ADMIN, params={"path": path}).status_code == 200


def test_auth_events_are_subscribed(client, fake_client):
    client.get("/api/properties")
    client.get("/api/stats")
    assert len(fake_client.auth.listeners) == 1


def test_backend_unavailable_is_503():
    with TestClient(create_app(gate=missing_backend_gate()), raise_server_exceptions=False) as c:
        r = c.get("/api/properties")
        assert r.status_code == 503
        assert r.json()["code"] == "backend_unavailable"
        assert c.get("/api/health").json()["backend"] == "failed"


def test_sign_in_without_backend_is_503():
    with TestClient(create_app(gate=missing_backend_gate()), raise_server_exceptions=False) as c:
        r = c.post("/api/auth/sign-in", json={"email": "admin@inmo.pe", "password": "secret"})
        assert r.status_code == 503
        assert r.json()["code"] == "backend_unavailable"
