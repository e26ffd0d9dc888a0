from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from catalog_hub.services import shared_links
from catalog_hub.services.shared_links import (
    SLUG_ALPHABET,
    ShareableLinkService,
    join_ids,
    normalize_product_ids,
    split_ids,
)


def test_create_then_resolve_round_trips_product_ids(db, admin) -> None:
    service = ShareableLinkService(db)
    ids = ["p-3", "p-1", "p-2"]

    link = service.create(ids, owner_id=admin.id, expires_at=datetime.now(timezone.utc) + timedelta(days=1))

    resolved = service.resolve(link.slug)
    assert resolved is not None
    assert resolved.product_ids == ids
    assert resolved.created_by_id == str(admin.id)


def test_slug_is_url_safe_and_long_enough(db, admin) -> None:
    link = ShareableLinkService(db).create(["p-1"], owner_id=admin.id)
    assert len(link.slug) >= 10
    assert set(link.slug) <= set(SLUG_ALPHABET)


def test_default_expiry_is_thirty_days(db, admin) -> None:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    link = ShareableLinkService(db).create(["p-1"], owner_id=admin.id, now=now)
    assert link.expires_at == now + timedelta(days=30)


def test_expired_and_unknown_slugs_resolve_to_none(db, admin) -> None:
    service = ShareableLinkService(db)
    expires = datetime.now(timezone.utc) + timedelta(hours=1)
    link = service.create(["p-1"], owner_id=admin.id, expires_at=expires)

    assert service.resolve(link.slug, now=expires - timedelta(seconds=1)) is not None
    assert service.resolve(link.slug, now=expires + timedelta(seconds=1)) is None
    assert service.resolve("does-not-exist") is None


def test_product_ids_are_an_ordered_set() -> None:
    assert normalize_product_ids(["b", "a", "b", " ", "c", "a"]) == ["b", "a", "c"]
    assert split_ids(join_ids(["b", "a", "c"])) == ["b", "a", "c"]
    with pytest.raises(ValueError):
        normalize_product_ids(["a,b"])


def test_create_rejects_empty_ids_and_past_expiry(db, admin) -> None:
    service = ShareableLinkService(db)
    with pytest.raises(ValueError):
        service.create([], owner_id=admin.id)
    with pytest.raises(ValueError):
        service.create(["p-1"], owner_id=admin.id, expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))


def test_slug_collision_is_retried_once(db, admin, monkeypatch) -> None:
    service = ShareableLinkService(db)
    monkeypatch.setattr(shared_links, "generate_slug", lambda length=None: "taken-slug-1")
    first = service.create(["p-1"], owner_id=admin.id)

    slugs = iter(["taken-slug-1", "fresh-slug-2"])
    monkeypatch.setattr(shared_links, "generate_slug", lambda length=None: next(slugs))
    second = service.create(["p-2"], owner_id=admin.id)

    assert first.slug == "taken-slug-1"
    assert second.slug == "fresh-slug-2"
    assert service.resolve("fresh-slug-2").product_ids == ["p-2"]


def test_list_for_owner_and_purge_expired(db, admin, staff) -> None:
    service = ShareableLinkService(db)
    now = datetime.now(timezone.utc)
    short = service.create(["p-1"], owner_id=admin.id, expires_at=now + timedelta(minutes=5))
    long = service.create(["p-2"], owner_id=admin.id, expires_at=now + timedelta(days=5))
    service.create(["p-3"], owner_id=staff.id)

    assert {link.slug for link in service.list_for_owner(admin.id)} == {short.slug, long.slug}

    assert service.purge_expired(now=now + timedelta(hours=1)) == 1
    assert service.resolve(short.slug, now=now) is None
    assert service.resolve(long.slug) is not None
