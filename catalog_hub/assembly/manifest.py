"""
Manifest construction for merged catalog documents.

A selection made in the document wizard (corporate covers, ordered products and
positioned adverts/promotions) is turned into the flat, ordered list of page
sources the assembly engine consumes. Positions arrive as the integers the UI
shows (2 = right after the front cover, 3..N+2 = after product k-2, N+3 = at the
end) and are translated once into an InsertionKey.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple, Union


CORPORATE_FRONT = "corporate_front"
CORPORATE_BACK = "corporate_back"
PRODUCT = "product"
ADVERTISEMENT = "advertisement"
PROMOTION = "promotion"

PLACEABLE_KINDS = (ADVERTISEMENT, PROMOTION)
ENTRY_KINDS = (CORPORATE_FRONT, CORPORATE_BACK, PRODUCT, ADVERTISEMENT, PROMOTION)

FIRST_POSITION = 2


class SelectionError(ValueError):
    """Base class for user-correctable selection problems."""


class IncompleteSelectionError(SelectionError):
    def __init__(self, field_name: str):
        self.field = field_name
        super().__init__(f"Selection is missing required field: {field_name}")


class InvalidPlacementError(SelectionError):
    def __init__(self, source_id: str, position, message: str):
        self.source_id = source_id
        self.position = position
        super().__init__(message)


@dataclass(frozen=True)
class BeforeProducts:
    pass


@dataclass(frozen=True)
class AfterProduct:
    index: int  # 1-based product index


@dataclass(frozen=True)
class AfterAllProducts:
    pass


InsertionKey = Union[BeforeProducts, AfterProduct, AfterAllProducts]


def insertion_key(position: int, product_count: int) -> InsertionKey:
    """Translate a UI position into an insertion key for a catalog of product_count products."""
    if position == FIRST_POSITION:
        return BeforeProducts()
    if FIRST_POSITION < position <= product_count + 2:
        return AfterProduct(position - 2)
    if position == product_count + 3:
        return AfterAllProducts()
    raise ValueError(f"position {position} is outside {FIRST_POSITION}..{product_count + 3}")


@dataclass(frozen=True)
class Placement:
    kind: str
    source_id: str
    position: int


@dataclass(frozen=True)
class Selection:
    front_id: Optional[str]
    back_id: Optional[str]
    product_ids: Tuple[str, ...] = ()
    additional: Tuple[Placement, ...] = ()

    @classmethod
    def from_lists(
        cls,
        front_id: Optional[str],
        back_id: Optional[str],
        product_ids: Sequence[str],
        adverts: Iterable[Tuple[str, int]] = (),
        promotions: Iterable[Tuple[str, int]] = (),
    ) -> "Selection":
        """Build a selection from separate advert and promotion lists.

        Adverts are treated as added before promotions, so at a shared position
        adverts come first.
        """
        additional = [Placement(ADVERTISEMENT, str(sid), int(pos)) for sid, pos in adverts]
        additional += [Placement(PROMOTION, str(sid), int(pos)) for sid, pos in promotions]
        return cls(
            front_id=front_id,
            back_id=back_id,
            product_ids=tuple(str(p) for p in product_ids),
            additional=tuple(additional),
        )


@dataclass(frozen=True)
class ManifestEntry:
    position: int
    kind: str
    source_id: str

    def as_dict(self) -> dict:
        return {"position": self.position, "kind": self.kind, "source_id": self.source_id}


@dataclass(frozen=True)
class Manifest:
    entries: Tuple[ManifestEntry, ...] = field(default_factory=tuple)

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> ManifestEntry:
        return self.entries[index]

    def pairs(self) -> List[Tuple[str, str]]:
        return [(e.kind, e.source_id) for e in self.entries]


def _validate(selection: Selection) -> None:
    if not selection.front_id:
        raise IncompleteSelectionError("front_id")
    if not selection.back_id:
        raise IncompleteSelectionError("back_id")
    if not selection.product_ids or any(not pid for pid in selection.product_ids):
        raise IncompleteSelectionError("product_ids")


def build(selection: Selection) -> Manifest:
    """Build the ordered manifest for a selection.

    The result depends only on the selection: covers frame the document,
    products keep their selected order and each placed item lands at its
    insertion key, keeping the order in which it was added among items that
    share a key.
    """
    _validate(selection)
    product_count = len(selection.product_ids)

    before: List[Placement] = []
    after_product: List[List[Placement]] = [[] for _ in range(product_count)]
    at_end: List[Placement] = []

    for placement in selection.additional:
        if placement.kind not in PLACEABLE_KINDS:
            raise InvalidPlacementError(
                placement.source_id, placement.position,
                f"{placement.kind!r} pages cannot be placed between products",
            )
        if not placement.source_id:
            raise IncompleteSelectionError("additional.source_id")
        try:
            key = insertion_key(placement.position, product_count)
        except ValueError as e:
            raise InvalidPlacementError(placement.source_id, placement.position, str(e))
        if isinstance(key, BeforeProducts):
            before.append(placement)
        elif isinstance(key, AfterProduct):
            after_product[key.index - 1].append(placement)
        else:
            at_end.append(placement)

    ordered: List[Tuple[str, str]] = [(CORPORATE_FRONT, selection.front_id)]
    ordered += [(p.kind, p.source_id) for p in before]
    for index, product_id in enumerate(selection.product_ids):
        ordered.append((PRODUCT, product_id))
        ordered += [(p.kind, p.source_id) for p in after_product[index]]
    ordered += [(p.kind, p.source_id) for p in at_end]
    ordered.append((CORPORATE_BACK, selection.back_id))

    return Manifest(tuple(
        ManifestEntry(position=i, kind=kind, source_id=str(source_id))
        for i, (kind, source_id) in enumerate(ordered)
    ))
