"""
Box Packer

Packs flat items (filters, panels, anything with a length x width footprint)
into boxes limited by stacking depth. Items are sorted by depth descending
and each one goes into the first box that still has room (first-fit
decreasing). Footprint never causes overflow; a box grows to the largest
length and width it holds.

Pure and deterministic: no I/O, same input order gives the same boxes.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from smartship.core.utils import round2

logger = logging.getLogger(__name__)

MAX_DEPTH = 4.0  # inches
BOX_TARE_WEIGHT = 0.5  # lbs

# Weight model: fixed per-item overhead plus volumetric density
ITEM_BASE_WEIGHT = 0.3  # lbs
ITEM_DENSITY = 0.002  # lbs per cubic inch


@dataclass(frozen=True)
class Item:
    """One shippable unit, dimensions in inches."""
    length: float
    width: float
    depth: float

    @property
    def volume(self) -> float:
        return self.length * self.width * self.depth

    @property
    def size_token(self) -> str:
        return f"{self.length:g}x{self.width:g}x{self.depth:g}"


@dataclass
class Box:
    """A packed box. current_depth is the sum of the contained item depths."""
    items: List[Item] = field(default_factory=list)
    length: float = 0.0
    width: float = 0.0
    current_depth: float = 0.0
    weight: float = BOX_TARE_WEIGHT

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def oversized(self) -> bool:
        """True when a single item deeper than MAX_DEPTH forced the box over the cap."""
        return self.current_depth > MAX_DEPTH

    def fits(self, item: Item) -> bool:
        return self.current_depth + item.depth <= MAX_DEPTH

    def add(self, item: Item) -> None:
        self.items.append(item)
        self.current_depth += item.depth
        self.length = max(self.length, item.length)
        self.width = max(self.width, item.width)
        self.weight = round2(self.weight + estimate_weight(item))

    def to_dict(self) -> dict:
        return {
            "item_count": self.item_count,
            "length": self.length,
            "width": self.width,
            "depth": self.current_depth,
            "weight": self.weight,
            "oversized": self.oversized,
            "items": [item.size_token for item in self.items],
        }


def estimate_weight(item: Item) -> float:
    """Estimated shipping weight of one item in lbs, rounded to 2 decimals."""
    return round2(ITEM_BASE_WEIGHT + item.volume * ITEM_DENSITY)


def pack(items: Iterable[Item]) -> List[Box]:
    """
    Pack items into boxes no deeper than MAX_DEPTH.

    An item deeper than MAX_DEPTH still gets its own box; check Box.oversized
    to find those.
    """
    # sorted() is stable, equal depths keep their input order
    ordered = sorted(items, key=lambda item: item.depth, reverse=True)

    boxes: List[Box] = []
    for item in ordered:
        for box in boxes:
            if box.fits(item):
                box.add(item)
                break
        else:
            box = Box()
            box.add(item)
            boxes.append(box)
            if box.oversized:
                logger.warning(
                    f"Item {item.size_token} exceeds max depth {MAX_DEPTH}, packed alone"
                )

    return boxes
