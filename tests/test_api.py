import asyncio

import pytest
from fastapi.testclient import TestClient

from vehicle_registry.main import app, get_service
from vehicle_registry.service import RegistryService

from conftest import SAMPLE_ROWS


@pytest.fixture
def client(container):
    service = RegistryService(container)
    asyncio.run(service.import_rows(SAMPLE_ROWS))
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def ids_by_text(client, dimension):
    return {item["text"]: item["id"] for item in client.get(f"/filters/{dimension}").json()}


class TestRegistryApi:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["row_count"] == len(SAMPLE_ROWS)

    def test_pairs_carry_status(self, client):
        response = client.get("/pairs", params={"include_exact_matches": False})
        assert response.status_code == 200
        statuses = {(p["make_text"], p["model_text"]): p["status"] for p in response.json()}
        assert statuses[("VOLV0", "XC60")] == "unmapped"
        assert ("HONDA", "CIVIC") not in statuses

    def test_auto_regularization_sweep(self, client):
        report = client.post("/regularization/auto").json()
        assert report["created"] == 2
        assert client.post("/regularization/auto").json()["created"] == 0

    def test_promote_and_delete(self, client):
        makes = ids_by_text(client, "make")
        models = ids_by_text(client, "model")

        rejected = client.post("/mappings/complete", json={"make_id": makes["VOLV0"], "model_id": models["XC60"]})
        assert rejected.status_code == 422

        response = client.post("/mappings/complete", json={
            "make_id": makes["VOLV0"],
            "model_id": models["XC60"],
            "fuel_type": "D",
            "canonical_make": "VOLVO",
            "canonical_model": "XC60",
        })
        assert response.status_code == 200
        assert response.json()["status"] == "complete"

        canonical = client.get(f"/pairs/{makes['VOLV0']}/{models['XC60']}/canonical").json()
        assert canonical == {"make": "VOLVO", "model": "XC60", "found": True}

        pair_key = response.json()["pair_key"]
        assert client.delete(f"/mappings/{pair_key}").status_code == 200
        assert client.delete(f"/mappings/{pair_key}").status_code == 404

    def test_unknown_pair_ids(self, client):
        assert client.get("/pairs/999/999/canonical").status_code == 404

    def test_constrained_filter_values(self, client):
        makes = ids_by_text(client, "make")
        response = client.get("/filters/model", params={"constrained_by": [makes["HONDA"]]})
        assert [item["text"] for item in response.json()] == ["ACCORD", "CIVI", "CIVIC"]

        assert client.get("/filters/wheel_count").status_code == 422

    def test_query(self, client):
        makes = ids_by_text(client, "make")
        response = client.post("/query", json={
            "filter": {"selections": {"make": [makes["HONDA"]]}, "age_ranges": [{"min_age": -1, "max_age": 5}]},
            "metric": {"kind": "count"},
        })
        assert response.status_code == 200
        assert {p["key"]: p["value"] for p in response.json()["points"]} == {2020: 4.0, 2021: 2.0, 2022: 1.0}

        rejected = client.post("/query", json={"filter": {"selections": {"make": [999]}}})
        assert rejected.status_code == 422

    def test_year_configuration(self, client):
        response = client.put("/config/years", json={"curated_years": [2020, 2021]})
        assert response.json()["curated_years"] == [2020, 2021]

        pairs = client.get("/pairs").json()
        assert {(p["make_text"], p["model_text"]) for p in pairs} == {
            ("HONDA", "CIVIC"), ("VOLV0", "XC60"), ("NOVA", "LFS"),
        }

        overlap = client.put("/config/years", json={"curated_years": [2020], "uncurated_years": [2020]})
        assert overlap.status_code == 422
