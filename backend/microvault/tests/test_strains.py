import itertools
import uuid

from microvault import models
from microvault.services import strain_registry
from .conftest import bootstrap_admin, create_strain, provision_user, strain_payload


def test_create_and_fetch_round_trip(client):
    admin_headers, _ = bootstrap_admin(client)
    headers, researcher = provision_user(client, admin_headers, clearance=2)
    payload = strain_payload(
        strain_code="BGR-007",
        isolation_date="2023-08-14",
        characteristics_macroscopic="Creamy white colonies",
        characteristics_microscopic="Gram positive rods",
        characteristics_biochemical="Catalase positive",
        potential_nitrogen_fixer=True,
        potential_cellulolytic=True,
        storage_technique="Glycerol 20%",
        culture_stock="Slant",
        storage_location="Freezer A / Rack 3",
        biosafety_level=2,
    )
    created = client.post("/api/strains", json=payload, headers=headers)
    assert created.status_code == 201
    strain_id = created.json()["id"]

    fetched = client.get(f"/api/strains/{strain_id}", headers=headers)
    assert fetched.status_code == 200
    data = fetched.json()
    for key, value in payload.items():
        assert data[key] == value, key
    assert data["created_by"] == researcher["id"]
    assert data["created_by_email"] == researcher["email"]
    assert data["created_at"]
    assert data["potential_proteolytic"] is False


def test_biosafety_level_defaults_to_one(client):
    admin_headers, _ = bootstrap_admin(client)
    payload = strain_payload()
    payload.pop("biosafety_level")
    resp = client.post("/api/strains", json=payload, headers=admin_headers)
    assert resp.status_code == 201
    assert resp.json()["biosafety_level"] == 1


def test_create_validation_errors(client):
    admin_headers, _ = bootstrap_admin(client)
    resp = client.post(
        "/api/strains",
        json=strain_payload(microorganism_type="VIRUS", biosafety_level=7),
        headers=admin_headers,
    )
    assert resp.status_code == 400
    fields = {e["field"] for e in resp.json()["errors"]}
    assert {"microorganism_type", "biosafety_level"} <= fields


def test_researcher_cannot_create_above_clearance(client, db):
    admin_headers, _ = bootstrap_admin(client)
    headers, _ = provision_user(client, admin_headers, clearance=2)
    resp = client.post("/api/strains", json=strain_payload(strain_code="HOT-1", biosafety_level=3), headers=headers)
    assert resp.status_code == 403
    assert resp.json()["reason"] == "insufficient_clearance"
    assert resp.json()["required"] == 3
    assert db.query(models.Strain).filter(models.Strain.strain_code == "HOT-1").count() == 0
    assert db.query(models.AuditLog).filter(models.AuditLog.action == "CREATE_STRAIN").count() == 0


def test_duplicate_code_conflicts(client):
    admin_headers, _ = bootstrap_admin(client)
    create_strain(client, admin_headers, strain_code="ABC-1")
    resp = client.post("/api/strains", json=strain_payload(strain_code="ABC-1"), headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Strain code already exists"


def test_store_constraint_catches_race_past_precheck(client, db, monkeypatch):
    admin_headers, _ = bootstrap_admin(client)
    # both requests pass the friendly pre-check, as two concurrent creates would
    monkeypatch.setattr(strain_registry, "_code_in_use", lambda *args, **kwargs: False)
    first = client.post("/api/strains", json=strain_payload(strain_code="ABC-1"), headers=admin_headers)
    second = client.post("/api/strains", json=strain_payload(strain_code="ABC-1"), headers=admin_headers)
    assert sorted([first.status_code, second.status_code]) == [201, 400]
    assert second.json()["reason"] == "conflict"
    assert db.query(models.Strain).filter(models.Strain.strain_code == "ABC-1").count() == 1
    assert db.query(models.AuditLog).filter(models.AuditLog.action == "CREATE_STRAIN").count() == 1


def test_deleted_code_can_be_reused(client):
    admin_headers, _ = bootstrap_admin(client)
    old = create_strain(client, admin_headers, strain_code="ABC-2")
    client.delete(f"/api/strains/{old['id']}", headers=admin_headers)
    new = create_strain(client, admin_headers, strain_code="ABC-2")
    assert new["id"] != old["id"]
    # the old record cannot come back while the code is taken
    resp = client.patch(f"/api/strains/{old['id']}/restore", headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["reason"] == "conflict"


def test_get_distinguishes_forbidden_from_missing(client):
    admin_headers, _ = bootstrap_admin(client)
    headers, _ = provision_user(client, admin_headers, clearance=1)
    secret = create_strain(client, admin_headers, biosafety_level=3)
    gone = create_strain(client, admin_headers, biosafety_level=1)
    client.delete(f"/api/strains/{gone['id']}", headers=admin_headers)

    forbidden = client.get(f"/api/strains/{secret['id']}", headers=headers)
    assert forbidden.status_code == 403
    assert forbidden.json()["reason"] == "insufficient_clearance"
    assert client.get(f"/api/strains/{gone['id']}", headers=headers).status_code == 404
    assert client.get(f"/api/strains/{uuid.uuid4()}", headers=headers).status_code == 404
    assert client.get("/api/strains/not-a-uuid", headers=headers).status_code == 400


def test_listing_never_exceeds_clearance(client):
    admin_headers, _ = bootstrap_admin(client)
    for level, kind, flag in itertools.product([1, 2, 3, 4], ["BAKTERI", "YEAST"], [True, False]):
        create_strain(
            client,
            admin_headers,
            biosafety_level=level,
            microorganism_type=kind,
            potential_antimicrobial=flag,
        )
    filter_sets = [
        {},
        {"microorganism_type": "YEAST"},
        {"antimicrobial": "true"},
        {"antimicrobial": "false", "microorganism_type": "BAKTERI"},
        {"biosafety": 4},
        {"biosafety": 2},
        {"search": "bacillus"},
        {"sort": "biosafety_level", "order": "desc"},
    ]
    for clearance in (1, 2, 3):
        headers, _ = provision_user(client, admin_headers, role="technician", clearance=clearance)
        for params in filter_sets:
            resp = client.get("/api/strains", params={**params, "limit": 100}, headers=headers)
            assert resp.status_code == 200
            body = resp.json()
            assert all(s["biosafety_level"] <= clearance for s in body["strains"]), params
            assert body["pagination"]["total"] == len(body["strains"])


def test_technician_without_clearance_sees_nothing(client):
    admin_headers, _ = bootstrap_admin(client)
    create_strain(client, admin_headers, biosafety_level=1)
    headers, _ = provision_user(client, admin_headers, role="technician", clearance=None)
    body = client.get("/api/strains", headers=headers).json()
    assert body["strains"] == []
    assert body["pagination"]["total"] == 0


def test_list_filters_and_search(client):
    admin_headers, _ = bootstrap_admin(client)
    create_strain(client, admin_headers, strain_code="SOIL-1", sample_type="Tanah", genus="Bacillus")
    create_strain(
        client,
        admin_headers,
        strain_code="WATER-1",
        sample_type="Air",
        genus="Pseudomonas",
        genus_species="Pseudomonas putida",
        origin_location="Ciliwung river",
        potential_phosphate_solubilizer=True,
    )
    create_strain(client, admin_headers, strain_code="MOLD-1", microorganism_type="KAPANG", genus="Aspergillus")

    def codes(**params):
        resp = client.get("/api/strains", params=params, headers=admin_headers)
        assert resp.status_code == 200
        return sorted(s["strain_code"] for s in resp.json()["strains"])

    assert codes(sample_type="Air") == ["WATER-1"]
    assert codes(genus="Bacillus") == ["SOIL-1"]
    assert codes(microorganism_type="KAPANG") == ["MOLD-1"]
    assert codes(search="ciliwung") == ["WATER-1"]
    assert codes(search="soil") == ["SOIL-1"]
    assert codes(phosphate_solubilizer="true") == ["WATER-1"]
    assert codes(phosphate_solubilizer="true", genus="Bacillus") == []


def test_pagination_and_sorting(client):
    admin_headers, _ = bootstrap_admin(client)
    for code in ["C-3", "A-1", "E-5", "B-2", "D-4"]:
        create_strain(client, admin_headers, strain_code=code)

    page = client.get(
        "/api/strains",
        params={"sort": "strain_code", "order": "asc", "limit": 2, "page": 2},
        headers=admin_headers,
    ).json()
    assert [s["strain_code"] for s in page["strains"]] == ["C-3", "D-4"]
    assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}

    desc = client.get(
        "/api/strains", params={"sort": "strain_code", "order": "sideways"}, headers=admin_headers
    ).json()
    assert desc["strains"][0]["strain_code"] == "E-5"

    unknown_sort = client.get(
        "/api/strains", params={"sort": "deleted_at; DROP TABLE strains"}, headers=admin_headers
    )
    assert unknown_sort.status_code == 200
    assert unknown_sort.json()["pagination"]["total"] == 5

    assert client.get("/api/strains", params={"limit": 0}, headers=admin_headers).status_code == 400


def test_technician_cannot_modify_even_own_records(client, db):
    admin_headers, _ = bootstrap_admin(client)
    headers, tech = provision_user(client, admin_headers, role="technician", clearance=3)
    own = create_strain(client, headers, biosafety_level=1)
    assert own["created_by"] == tech["id"]
    other = create_strain(client, admin_headers, biosafety_level=1)

    for target in (own, other):
        resp = client.put(f"/api/strains/{target['id']}", json={"genus": "Changed"}, headers=headers)
        assert resp.status_code == 403
        assert resp.json()["reason"] == "role_forbidden"
    assert client.delete(f"/api/strains/{own['id']}", headers=headers).json()["reason"] == "role_forbidden"
    assert db.query(models.AuditLog).filter(models.AuditLog.action == "UPDATE_STRAIN").count() == 0


def test_researcher_updates_only_own_records(client):
    admin_headers, _ = bootstrap_admin(client)
    headers, _ = provision_user(client, admin_headers, clearance=2)
    other_headers, _ = provision_user(client, admin_headers, clearance=2)
    mine = create_strain(client, headers)
    theirs = create_strain(client, other_headers)

    ok = client.put(f"/api/strains/{mine['id']}", json={"storage_location": "Freezer B"}, headers=headers)
    assert ok.status_code == 200
    denied = client.put(f"/api/strains/{theirs['id']}", json={"storage_location": "Freezer B"}, headers=headers)
    assert denied.status_code == 403
    assert denied.json()["reason"] == "not_owner"

    admin_edit = client.put(f"/api/strains/{theirs['id']}", json={"genus": "Lactobacillus"}, headers=admin_headers)
    assert admin_edit.status_code == 200


def test_partial_update_leaves_other_fields(client):
    admin_headers, _ = bootstrap_admin(client)
    created = create_strain(
        client,
        admin_headers,
        genus="Bacillus",
        storage_location="Freezer A",
        potential_amylolytic=True,
    )
    resp = client.put(
        f"/api/strains/{created['id']}",
        json={"storage_location": "Freezer C", "potential_amylolytic": False},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["storage_location"] == "Freezer C"
    assert data["potential_amylolytic"] is False
    assert data["genus"] == "Bacillus"
    assert data["strain_code"] == created["strain_code"]

    empty = client.put(f"/api/strains/{created['id']}", json={}, headers=admin_headers)
    assert empty.status_code == 400
    assert empty.json()["detail"] == "No fields to update"

    nulled = client.put(f"/api/strains/{created['id']}", json={"strain_code": None}, headers=admin_headers)
    assert nulled.status_code == 400


def test_update_cannot_raise_level_above_clearance(client):
    admin_headers, _ = bootstrap_admin(client)
    headers, _ = provision_user(client, admin_headers, clearance=2)
    mine = create_strain(client, headers, biosafety_level=1)

    resp = client.put(f"/api/strains/{mine['id']}", json={"biosafety_level": 3}, headers=headers)
    assert resp.status_code == 403
    assert resp.json()["reason"] == "insufficient_clearance"
    assert client.get(f"/api/strains/{mine['id']}", headers=headers).json()["biosafety_level"] == 1

    assert client.put(f"/api/strains/{mine['id']}", json={"biosafety_level": 2}, headers=headers).status_code == 200


def test_update_code_collision(client):
    admin_headers, _ = bootstrap_admin(client)
    create_strain(client, admin_headers, strain_code="KEEP-1")
    other = create_strain(client, admin_headers, strain_code="KEEP-2")
    resp = client.put(f"/api/strains/{other['id']}", json={"strain_code": "KEEP-1"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["reason"] == "conflict"


def test_delete_and_restore_cycle(client):
    admin_headers, _ = bootstrap_admin(client)
    headers, _ = provision_user(client, admin_headers, clearance=2)
    mine = create_strain(client, headers)

    deleted = client.delete(f"/api/strains/{mine['id']}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json() == {"message": "Strain deleted successfully", "id": mine["id"]}
    assert client.get(f"/api/strains/{mine['id']}", headers=headers).status_code == 404
    assert client.get("/api/strains", headers=headers).json()["pagination"]["total"] == 0
    assert client.delete(f"/api/strains/{mine['id']}", headers=headers).status_code == 404
    assert client.put(f"/api/strains/{mine['id']}", json={"genus": "X"}, headers=headers).status_code == 404

    restored = client.patch(f"/api/strains/{mine['id']}/restore", headers=headers)
    assert restored.status_code == 200
    assert client.get(f"/api/strains/{mine['id']}", headers=headers).status_code == 200


def test_restore_of_active_record_is_rejected_without_change(client, db):
    admin_headers, _ = bootstrap_admin(client)
    created = create_strain(client, admin_headers)
    before = client.get(f"/api/strains/{created['id']}", headers=admin_headers).json()

    resp = client.patch(f"/api/strains/{created['id']}/restore", headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["reason"] == "not_deleted"
    assert client.get(f"/api/strains/{created['id']}", headers=admin_headers).json() == before
    assert db.query(models.AuditLog).filter(models.AuditLog.action == "RESTORE_STRAIN").count() == 0
    assert client.patch(f"/api/strains/{uuid.uuid4()}/restore", headers=admin_headers).status_code == 404


def test_researcher_cannot_restore_others_records(client):
    admin_headers, _ = bootstrap_admin(client)
    headers, _ = provision_user(client, admin_headers, clearance=2)
    theirs = create_strain(client, admin_headers)
    client.delete(f"/api/strains/{theirs['id']}", headers=admin_headers)
    resp = client.patch(f"/api/strains/{theirs['id']}/restore", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["reason"] == "not_owner"
