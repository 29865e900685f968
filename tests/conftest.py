import pytest

from fakes import FakeClient, gate_for, sample_properties


@pytest.fixture
def fake_client():
    inquiries = [
        {"id": 1, "name": "Ana", "email": "ana@example.com", "message": "Info", "property_id": 1,
         "status": "new", "created_at": "2024-03-02T10:00:00+00:00"},
        {"id": 2, "name": "Luis", "email": "luis@example.com", "message": "Visita", "property_id": 42,
         "status": "read", "created_at": "2024-03-11T10:00:00+00:00"},
    ]
    agents = [{"id": 7, "name": "Carla Rojas", "email": "carla@example.com"}]
    return FakeClient(
        tables={"properties": sample_properties(), "inquiries": inquiries, "agents": agents},
        tokens={"admin-token": "admin"},
    )


@pytest.fixture
def gate(fake_client):
    return gate_for(fake_client)
