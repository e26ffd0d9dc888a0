from __future__ import annotations

import pytest

from catalog_hub.assembly.manifest import (
    ADVERTISEMENT,
    AfterAllProducts,
    AfterProduct,
    BeforeProducts,
    IncompleteSelectionError,
    InvalidPlacementError,
    Placement,
    PROMOTION,
    Selection,
    build,
    insertion_key,
)


def _selection(*additional: Placement, products=("P1", "P2")) -> Selection:
    return Selection(front_id="F", back_id="B", product_ids=tuple(products), additional=tuple(additional))


def test_advert_at_position_two_goes_before_products() -> None:
    manifest = build(_selection(Placement(ADVERTISEMENT, "A", 2)))
    assert manifest.pairs() == [
        ("corporate_front", "F"),
        ("advertisement", "A"),
        ("product", "P1"),
        ("product", "P2"),
        ("corporate_back", "B"),
    ]


def test_promotion_at_position_three_follows_first_product() -> None:
    manifest = build(_selection(Placement(PROMOTION, "X", 3)))
    assert [sid for _, sid in manifest.pairs()] == ["F", "P1", "X", "P2", "B"]


def test_promotion_at_end_precedes_back_cover() -> None:
    manifest = build(_selection(Placement(PROMOTION, "X", 5)))
    assert [sid for _, sid in manifest.pairs()] == ["F", "P1", "P2", "X", "B"]


def test_without_additional_pages_products_sit_between_covers() -> None:
    manifest = build(_selection(products=("P1", "P2", "P3")))
    assert [sid for _, sid in manifest.pairs()] == ["F", "P1", "P2", "P3", "B"]
    assert [e.position for e in manifest] == [0, 1, 2, 3, 4]


def test_same_position_keeps_insertion_order_across_kinds() -> None:
    manifest = build(_selection(
        Placement(PROMOTION, "X1", 3),
        Placement(ADVERTISEMENT, "A1", 3),
        Placement(PROMOTION, "X2", 3),
    ))
    assert [sid for _, sid in manifest.pairs()] == ["F", "P1", "X1", "A1", "X2", "P2", "B"]


def test_from_lists_places_adverts_before_promotions_at_shared_position() -> None:
    selection = Selection.from_lists(
        "F", "B", ["P1", "P2"],
        adverts=[("A1", 4), ("A2", 2)],
        promotions=[("X1", 4)],
    )
    manifest = build(selection)
    assert [sid for _, sid in manifest.pairs()] == ["F", "A2", "P1", "P2", "A1", "X1", "B"]


def test_after_last_product_comes_before_at_end() -> None:
    manifest = build(_selection(
        Placement(PROMOTION, "END", 5),
        Placement(ADVERTISEMENT, "AFTER2", 4),
    ))
    assert [sid for _, sid in manifest.pairs()] == ["F", "P1", "P2", "AFTER2", "END", "B"]


def test_build_is_deterministic() -> None:
    selection = _selection(
        Placement(ADVERTISEMENT, "A", 2),
        Placement(PROMOTION, "X", 4),
        Placement(ADVERTISEMENT, "A", 5),
    )
    assert build(selection) == build(selection)
    assert build(selection).pairs() == build(selection).pairs()


def test_duplicate_placements_are_kept() -> None:
    manifest = build(_selection(Placement(ADVERTISEMENT, "A", 2), Placement(ADVERTISEMENT, "A", 2)))
    assert [sid for _, sid in manifest.pairs()].count("A") == 2


@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"front_id": None, "back_id": "B", "product_ids": ("P1",)}, "front_id"),
        ({"front_id": "F", "back_id": "", "product_ids": ("P1",)}, "back_id"),
        ({"front_id": "F", "back_id": "B", "product_ids": ()}, "product_ids"),
    ],
)
def test_incomplete_selection_names_missing_field(kwargs, field) -> None:
    with pytest.raises(IncompleteSelectionError) as exc:
        build(Selection(**kwargs))
    assert exc.value.field == field


@pytest.mark.parametrize("position", [0, 1, 6, 42])
def test_position_outside_range_is_rejected(position) -> None:
    with pytest.raises(InvalidPlacementError):
        build(_selection(Placement(ADVERTISEMENT, "A", position)))


def test_cover_kinds_cannot_be_placed_between_products() -> None:
    with pytest.raises(InvalidPlacementError):
        build(_selection(Placement("corporate_front", "F2", 3)))


def test_insertion_key_translation() -> None:
    assert insertion_key(2, 3) == BeforeProducts()
    assert insertion_key(3, 3) == AfterProduct(1)
    assert insertion_key(5, 3) == AfterProduct(3)
    assert insertion_key(6, 3) == AfterAllProducts()
    with pytest.raises(ValueError):
        insertion_key(7, 3)
