from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from catalog_hub.models.models import SharedLink

from helpers import make_pdf, page_widths, wait_until


def _pdf_file(name: str, data: bytes) -> dict:
    return {"file": (name, data, "application/pdf")}


def _collateral(client, headers, kind: str, data: bytes, title: str = "Untitled") -> dict:
    r = client.post("/collateral", data={"kind": kind, "title": title}, files=_pdf_file(f"{kind}.pdf", data), headers=headers)
    assert r.status_code == 201, r.text
    item_id = r.json()["id"]

    def _ready():
        item = client.get(f"/collateral/{item_id}", headers=headers).json()
        return item if item["blob_ref"] else None

    return wait_until(_ready)


def _brand(client, headers, name: str = "Northwind") -> dict:
    r = client.post("/brands", json={"name": name, "description": "Test brand"}, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def _product(client, headers, brand_id: str, name: str, data: bytes, **fields) -> dict:
    form = {"brand_id": brand_id, "name": name, **{k: str(v) for k, v in fields.items()}}
    r = client.post("/products", data=form, files={"pdf": (f"{name}.pdf", data, "application/pdf")}, headers=headers)
    assert r.status_code == 201, r.text
    product_id = r.json()["id"]

    def _ready():
        p = client.get(f"/products/{product_id}", headers=headers).json()
        return p if p["pdf_ref"] else None

    return wait_until(_ready)


def test_login_and_me(client, admin) -> None:
    r = client.post("/auth/login", json={"identifier": "admin@example.com", "password": "admin-password"})
    assert r.status_code == 200
    token = r.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["username"] == "admin"
    assert me.json()["roles"] == ["admin"]

    bad = client.post("/auth/login", json={"identifier": "admin", "password": "wrong"})
    assert bad.status_code == 401


def test_authentication_and_roles_are_enforced(client, staff_headers) -> None:
    assert client.get("/brands").status_code == 401
    assert client.get("/brands", headers=staff_headers).status_code == 200
    assert client.post("/brands", json={"name": "Nope"}, headers=staff_headers).status_code == 403


def test_collateral_upload_is_attached_in_the_background(client, admin_headers) -> None:
    data = make_pdf(101)
    r = client.post(
        "/collateral",
        data={"kind": "corporate_front", "title": "Front"},
        files=_pdf_file("front.pdf", data),
        headers=admin_headers,
    )
    assert r.status_code == 201
    created = r.json()
    assert created["blob_ref"] is None
    assert created["upload_job_id"]

    def _done():
        job = client.get(f"/files/uploads/{created['upload_job_id']}", headers=admin_headers).json()
        return job if job["status"] == "done" else None

    assert wait_until(_done)["attempts"] == 1

    item = client.get(f"/collateral/{created['id']}", headers=admin_headers).json()
    download = client.get(item["blob_ref"])
    assert download.status_code == 200
    assert download.content == data


def test_collateral_rejects_unknown_kind(client, admin_headers) -> None:
    r = client.post("/collateral", data={"kind": "banner"}, files=_pdf_file("x.pdf", make_pdf(1)), headers=admin_headers)
    assert r.status_code == 400


def test_product_listing_filters_and_pagination(client, admin_headers) -> None:
    brand = _brand(client, admin_headers)
    _product(client, admin_headers, brand["id"], "Northwind Blue", make_pdf(201), size="King", flavor="Classic")
    _product(client, admin_headers, brand["id"], "Northwind Menthol", make_pdf(202), size="King", flavor="Menthol", capsules=1)
    _product(client, admin_headers, brand["id"], "Northwind Slim", make_pdf(203), size="Slim", flavor="Classic")

    page = client.get("/products", params={"size": "king"}, headers=admin_headers).json()
    assert page["total"] == 2
    assert {p["name"] for p in page["items"]} == {"Northwind Blue", "Northwind Menthol"}

    first = client.get("/products", params={"page": 1, "page_size": 2}, headers=admin_headers).json()
    second = client.get("/products", params={"page": 2, "page_size": 2}, headers=admin_headers).json()
    assert first["total"] == 3
    assert len(first["items"]) == 2
    assert len(second["items"]) == 1

    capsule = client.get("/products", params={"capsules": 1}, headers=admin_headers).json()
    assert [p["name"] for p in capsule["items"]] == ["Northwind Menthol"]

    options = client.get("/products/filters", headers=admin_headers).json()
    assert options["sizes"] == ["King", "Slim"]
    assert options["flavors"] == ["Classic", "Menthol"]

    assert all(p["brand_name"] == "Northwind" for p in page["items"])


def test_generate_merges_in_manifest_order_and_shares(client, admin_headers) -> None:
    front = _collateral(client, admin_headers, "corporate_front", make_pdf(101))
    back = _collateral(client, admin_headers, "corporate_back", make_pdf(401))
    advert = _collateral(client, admin_headers, "advertisement", make_pdf(301))
    brand = _brand(client, admin_headers)
    p1 = _product(client, admin_headers, brand["id"], "First", make_pdf(201))
    p2 = _product(client, admin_headers, brand["id"], "Second", make_pdf(202, 203))

    r = client.post("/pdf/generate", json={
        "frontCorporateId": front["id"],
        "backCorporateId": back["id"],
        "productIds": [p1["id"], p2["id"]],
        "additionalPages": [{"id": advert["id"], "position": 3}],
    }, headers=admin_headers)

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["pageCount"] == 6
    assert body["skipped"] == []
    assert body["sharedUrl"] == f"/shared/{body['slug']}"

    merged = client.get(body["url"])
    assert merged.status_code == 200
    assert page_widths(merged.content) == [101, 201, 301, 202, 203, 401]

    shared = client.get(f"/shared-pdf/{body['slug']}")
    assert shared.status_code == 200
    assert [p["name"] for p in shared.json()["products"]] == ["First", "Second"]


def test_generate_skips_deleted_products(client, admin_headers) -> None:
    front = _collateral(client, admin_headers, "corporate_front", make_pdf(101))
    back = _collateral(client, admin_headers, "corporate_back", make_pdf(401))
    brand = _brand(client, admin_headers)
    kept = _product(client, admin_headers, brand["id"], "Kept", make_pdf(201))
    gone = _product(client, admin_headers, brand["id"], "Gone", make_pdf(202))
    assert client.delete(f"/products/{gone['id']}", headers=admin_headers).status_code == 200

    r = client.post("/pdf/generate", json={
        "frontCorporateId": front["id"],
        "backCorporateId": back["id"],
        "productIds": [kept["id"], gone["id"]],
        "share": False,
    }, headers=admin_headers)

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["pageCount"] == 3
    assert body["slug"] is None
    assert [(s["source_id"], s["reason"]) for s in body["skipped"]] == [(gone["id"], "not_found")]
    assert page_widths(client.get(body["url"]).content) == [101, 201, 401]


def test_generate_reports_incomplete_selection_and_bad_positions(client, admin_headers) -> None:
    some_id = str(uuid.uuid4())
    missing_front = client.post("/pdf/generate", json={
        "backCorporateId": some_id,
        "productIds": [some_id],
    }, headers=admin_headers)
    assert missing_front.status_code == 400
    assert missing_front.json()["detail"]["field"] == "front_id"

    bad_position = client.post("/pdf/generate", json={
        "frontCorporateId": some_id,
        "backCorporateId": some_id,
        "productIds": [some_id],
        "additionalPages": [{"id": some_id, "position": 9, "kind": "promotion"}],
    }, headers=admin_headers)
    assert bad_position.status_code == 400
    assert bad_position.json()["detail"]["position"] == 9


def test_generate_with_nothing_resolvable_is_unprocessable(client, admin_headers) -> None:
    r = client.post("/pdf/generate", json={
        "frontCorporateId": str(uuid.uuid4()),
        "backCorporateId": str(uuid.uuid4()),
        "productIds": [str(uuid.uuid4())],
    }, headers=admin_headers)

    assert r.status_code == 422
    skipped = r.json()["detail"]["skipped"]
    assert [s["reason"] for s in skipped] == ["not_found"] * 3


def test_shared_pdf_create_list_and_expiry(client, db, admin_headers) -> None:
    brand = _brand(client, admin_headers)
    p1 = _product(client, admin_headers, brand["id"], "Alpha", make_pdf(201))
    p2 = _product(client, admin_headers, brand["id"], "Beta", make_pdf(202))

    r = client.post("/shared-pdf", json={"productIds": f"{p2['id']},{p1['id']},{p2['id']}"}, headers=admin_headers)
    assert r.status_code == 200, r.text
    slug = r.json()["slug"]
    assert r.json()["url"] == f"/shared/{slug}"

    listed = client.get("/shared-pdf", headers=admin_headers).json()
    assert [item["uniqueSlug"] for item in listed] == [slug]
    assert [p["name"] for p in listed[0]["products"]] == ["Beta", "Alpha"]
    assert listed[0]["expired"] is False

    public = client.get(f"/shared-pdf/{slug}")
    assert public.status_code == 200
    assert [p["name"] for p in public.json()["products"]] == ["Beta", "Alpha"]

    db.query(SharedLink).filter(SharedLink.slug == slug).update(
        {"expires_at": datetime.now(timezone.utc) - timedelta(minutes=1)}, synchronize_session=False
    )
    db.commit()

    expired = client.get(f"/shared-pdf/{slug}")
    assert expired.status_code == 404
    assert expired.json()["products"] == []
    assert client.get("/shared-pdf/unknown-slug-000").status_code == 404


def test_shared_pdf_rejects_empty_selection(client, admin_headers) -> None:
    r = client.post("/shared-pdf", json={"productIds": []}, headers=admin_headers)
    assert r.status_code == 400


def test_replacing_pdf_right_after_create_keeps_the_newest_file(client, admin_headers) -> None:
    brand = _brand(client, admin_headers)
    first, second = make_pdf(211), make_pdf(222)
    r = client.post(
        "/products",
        data={"brand_id": brand["id"], "name": "Quick Swap"},
        files={"pdf": ("first.pdf", first, "application/pdf")},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    product_id = r.json()["id"]

    replaced = client.put(f"/products/{product_id}/pdf", files=_pdf_file("second.pdf", second), headers=admin_headers)
    assert replaced.status_code == 200, replaced.text
    job_id = replaced.json()["upload_job_ids"][0]

    def _settled():
        job = client.get(f"/files/uploads/{job_id}", headers=admin_headers).json()
        return job if job["status"] != "pending" else None

    assert wait_until(_settled)["status"] == "done"
    product = client.get(f"/products/{product_id}", headers=admin_headers).json()
    assert client.get(product["pdf_ref"]).content == second


def test_generate_removes_merged_pdf_when_sharing_fails(client, admin_headers) -> None:
    front = _collateral(client, admin_headers, "corporate_front", make_pdf(101))
    back = _collateral(client, admin_headers, "corporate_back", make_pdf(401))
    brand = _brand(client, admin_headers)
    product = _product(client, admin_headers, brand["id"], "Only", make_pdf(201))
    storage_dir = Path(os.environ["STORAGE_DIR"])
    before = sorted(storage_dir.rglob("generated/*/*.pdf"))

    r = client.post("/pdf/generate", json={
        "frontCorporateId": front["id"],
        "backCorporateId": back["id"],
        "productIds": [product["id"], "not,an-id"],
    }, headers=admin_headers)

    assert r.status_code == 400, r.text
    assert "Could not share PDF" in r.json()["detail"]
    assert sorted(storage_dir.rglob("generated/*/*.pdf")) == before
    assert client.get("/shared-pdf", headers=admin_headers).json() == []
