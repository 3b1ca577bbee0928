"""
Tests para el módulo de Clientes

- Validación de NIF y email
- CRUD por tenant y unicidad de NIF
- Borrado sin cascada sobre facturas
- Repositorio SQLAlchemy
- Endpoints /clients
"""

import pytest
from pydantic import ValidationError

from facturasimple.common.audit import AuditTrail
from facturasimple.common.exceptions import ConflictError, NotFoundError
from facturasimple.common.validators import clean_nif, validate_nif
from facturasimple.modules.clients.repository import SQLAlchemyClientRepository
from facturasimple.modules.clients.schemas import ClientCreate, ClientUpdate
from facturasimple.modules.clients.service import ClientService


@pytest.fixture
def sample_client_data():
    return {
        "name": "Talleres Pérez S.L.",
        "nif": "b 12.345.678",
        "address": "Avenida de la Constitución 5, 41001 Sevilla",
        "email": "admin@talleres.es",
    }


class TestNifValidation:
    def test_clean_nif(self):
        assert clean_nif("b 12.345.678") == "B12345678"
        assert clean_nif("B-12345678") == "B-12345678"

    def test_validate_nif(self):
        assert validate_nif("12345678Z")
        assert validate_nif("B-1234")
        assert not validate_nif("1234")
        assert not validate_nif("B#12345")


class TestClientSchemas:
    def test_nif_normalized(self, sample_client_data):
        data = ClientCreate(**sample_client_data)
        assert data.nif == "B12345678"

    def test_invalid_email(self, sample_client_data):
        with pytest.raises(ValidationError):
            ClientCreate(**{**sample_client_data, "email": "no-es-un-email"})

    def test_short_nif(self, sample_client_data):
        with pytest.raises(ValidationError):
            ClientCreate(**{**sample_client_data, "nif": "123"})

    def test_blank_name(self, sample_client_data):
        with pytest.raises(ValidationError):
            ClientCreate(**{**sample_client_data, "name": "   "})


class TestClientService:
    def test_create_and_get(self, client_service, sample_client):
        fetched = client_service.get(sample_client.id, sample_client.tenant_id)
        assert fetched.name == "Acme Consultores S.L."
        assert fetched.created_at == fetched.updated_at

    def test_duplicate_nif_rejected(self, client_service, sample_client):
        with pytest.raises(ConflictError):
            client_service.create(
                ClientCreate(name="Otra", nif="B-87654321", address="Calle 2", email="otra@acme.es"),
                sample_client.tenant_id,
            )

    def test_same_nif_other_tenant(self, client_service, sample_client):
        other = client_service.create(
            ClientCreate(name="Acme", nif="B-87654321", address="Calle 2", email="otra@acme.es"),
            "otra-empresa",
        )
        assert other.tenant_id == "otra-empresa"
        assert client_service.list("otra-empresa") == [other]

    def test_get_other_tenant_not_found(self, client_service, sample_client):
        with pytest.raises(NotFoundError):
            client_service.get(sample_client.id, "otra-empresa")

    def test_update(self, client_service, sample_client, clock):
        clock.advance(days=1)
        updated = client_service.update(
            sample_client.id, ClientUpdate(name="Acme Consultoría S.L."), sample_client.tenant_id
        )
        assert updated.name == "Acme Consultoría S.L."
        assert updated.nif == sample_client.nif
        assert updated.updated_at > sample_client.updated_at

    def test_search(self, client_service, sample_client):
        assert client_service.list(sample_client.tenant_id, "acme") == [sample_client]
        assert client_service.list(sample_client.tenant_id, "87654321") == [sample_client]
        assert client_service.list(sample_client.tenant_id, "zzz") == []

    def test_delete_keeps_invoices(self, client_service, sample_client, service, make_candidate):
        invoice = service.create(make_candidate())
        assert client_service.delete(sample_client.id, sample_client.tenant_id)
        assert client_service.find(sample_client.id, sample_client.tenant_id) is None

        kept = service.get(invoice.id)
        assert kept.client_name == "Acme Consultores S.L."

    def test_delete_missing(self, client_service):
        assert client_service.delete("no-existe", "public") is False

    def test_name_lookup(self, client_service, sample_client):
        assert client_service.name_lookup(sample_client.tenant_id) == {sample_client.name: sample_client.id}

    def test_audit_events(self, client_service, sample_client, audit):
        client_service.delete(sample_client.id, sample_client.tenant_id)
        actions = [event.action for event in audit.list(sample_client.tenant_id)]
        assert actions == ["delete", "create"]

    def test_empty_audit_trail_records_events(self, client_repo, clock):
        trail = AuditTrail(clock=clock)
        service = ClientService(client_repo, clock, trail)
        client = service.create(
            ClientCreate(name="Bar Manolo", nif="12345678Z", address="Plaza 3", email="manolo@bar.es"), "public"
        )
        service.update(client.id, ClientUpdate(address="Plaza 4"), "public")
        assert [event.action for event in trail.list()] == ["update", "create"]


class TestSQLAlchemyClientRepository:
    def test_round_trip(self, db_session, clock):
        service = ClientService(SQLAlchemyClientRepository(db_session, "public"), clock)
        created = service.create(
            ClientCreate(name="Bar Manolo", nif="12345678Z", address="Plaza 3", email="manolo@bar.es"),
            "public",
        )
        assert service.get(created.id, "public").email == "manolo@bar.es"

        service.update(created.id, ClientUpdate(address="Plaza 4"), "public")
        assert service.get(created.id, "public").address == "Plaza 4"

        assert service.delete(created.id, "public")
        assert service.list("public") == []

    def test_tenant_scoped(self, db_session, clock):
        ClientService(SQLAlchemyClientRepository(db_session, "a"), clock).create(
            ClientCreate(name="Uno", nif="12345678Z", address="Calle", email="uno@uno.es"), "a"
        )
        assert ClientService(SQLAlchemyClientRepository(db_session, "b"), clock).list("b") == []


class TestClientsEndpoints:
    def test_create_and_list(self, api_client):
        response = api_client.post("/clients/", json={
            "name": "Estudio Gráfico",
            "nif": "X1234567L",
            "address": "Calle Luna 7",
            "email": "hola@estudio.es",
        })
        assert response.status_code == 201
        client_id = response.json()["id"]

        response = api_client.get("/clients/")
        assert response.json()["total"] == 1
        assert api_client.get(f"/clients/{client_id}").json()["nif"] == "X1234567L"

    def test_invalid_payload(self, api_client):
        response = api_client.post("/clients/", json={"name": "X", "nif": "1", "address": "A", "email": "x"})
        assert response.status_code == 422

    def test_duplicate_nif(self, api_client, sample_client):
        response = api_client.post("/clients/", json={
            "name": "Copia", "nif": sample_client.nif, "address": "Calle", "email": "copia@acme.es",
        })
        assert response.status_code == 409

    def test_patch_and_delete(self, api_client, sample_client):
        response = api_client.patch(f"/clients/{sample_client.id}", json={"email": "nuevo@acme.es"})
        assert response.status_code == 200
        assert response.json()["email"] == "nuevo@acme.es"

        assert api_client.delete(f"/clients/{sample_client.id}").status_code == 204
        assert api_client.get(f"/clients/{sample_client.id}").status_code == 404
        assert api_client.delete(f"/clients/{sample_client.id}").status_code == 404

    def test_tenant_header(self, api_client, sample_client):
        response = api_client.get("/clients/", headers={"X-Tenant-ID": "otra-empresa"})
        assert response.json()["total"] == 0
