"""
Address / size input parsing

Turns the three accepted request shapes into a list of AddressGroup:

(a) one delimited string, one entry per item, each entry holding a size
    token and its destination:
        "16x20x1 | 12 Oak St, Austin, TX 78701; 20x25x4 | 9 Elm Rd, Reno, NV 89501"
(b) parallel address and size lists (arrays or delimited strings); a
    repeated address means several items for the same destination
(c) structured groups:
        [{"address": "...", "items": ["16x20x1", {"length": 20, "width": 25, "depth": 4, "quantity": 2}]}]

Every dimension must be greater than zero: "16x20x0" matches the token
syntax and is still rejected. Any unparseable address or size token rejects
the whole request.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from smartship.core.exceptions import InputValidationError
from smartship.services.packing import Item

MAX_ITEMS_PER_REQUEST = 200

QUOTE_MODE = "quote"
SHIP_MODE = "ship"

_NUMBER = r"(\d+(?:\.\d+)?)"

SIZE_TOKEN_RE = re.compile(rf"^\s*{_NUMBER}\s*[xX]\s*{_NUMBER}\s*[xX]\s*{_NUMBER}\s*$")
EMBEDDED_SIZE_TOKEN_RE = re.compile(rf"(?<![\w.]){_NUMBER}\s*[xX]\s*{_NUMBER}\s*[xX]\s*{_NUMBER}(?![\w.])")

# Quote flow: ", ST 12345" must end the address
STATE_POSTAL_ANCHORED_RE = re.compile(r",\s*([A-Za-z]{2})\s*,?\s*(\d{5}(?:-\d{4})?)\s*$")
# Ship flow: last "ST 12345" anywhere, comma before the state optional
STATE_POSTAL_RE = re.compile(r"(?:^|[\s,])([A-Za-z]{2})\s*,?\s*(\d{5}(?:-\d{4})?)(?!\d)")

ENTRY_SPLIT_RE = re.compile(r"[\n;]+")
ADDRESS_LIST_SPLIT_RE = re.compile(r"[\n;|]+")
SIZE_LIST_SPLIT_RE = re.compile(r"[\n;|,]+")

ENTRY_SEPARATORS = " \t|:-"


@dataclass(frozen=True)
class ParsedAddress:
    raw: str
    state: str
    postal_code: str
    street: Optional[str] = None
    city: Optional[str] = None
    country_code: str = "US"

    @property
    def key(self) -> str:
        return normalize_address(self.raw)


@dataclass
class AddressGroup:
    """All items bound for one normalized destination."""
    address: ParsedAddress
    items: List[Item] = field(default_factory=list)


def normalize_address(raw: str) -> str:
    """Grouping key: whitespace collapsed, case folded."""
    return " ".join(raw.split()).casefold()


def parse_size_token(token: Any) -> Item:
    """Parse "LxWxD" (inches) into an Item."""
    if not isinstance(token, str):
        raise InputValidationError(f"Size must be a string like 16x20x1, got {token!r}", field="size")

    match = SIZE_TOKEN_RE.match(token)
    if not match:
        raise InputValidationError(f"Invalid size '{token}', expected LxWxD", field="size", value=token)

    length, width, depth = (float(part) for part in match.groups())
    return _make_item(length, width, depth, token)


def _make_item(length: float, width: float, depth: float, source: Any) -> Item:
    if length <= 0 or width <= 0 or depth <= 0:
        raise InputValidationError(
            f"Invalid size '{source}', dimensions must be greater than zero",
            field="size",
            value=str(source),
        )
    return Item(length=length, width=width, depth=depth)


def parse_address(raw: Any, mode: str = QUOTE_MODE) -> ParsedAddress:
    """
    Pull (state, postal code) out of "Street, City, ST 12345[-6789]".

    Quote mode needs the state/postal pair at the end of the string. Ship
    mode takes the last pair found anywhere, so trailing text such as a
    country name is tolerated.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InputValidationError("Address is required", field="address")

    text = " ".join(raw.split())

    if mode == QUOTE_MODE:
        match = STATE_POSTAL_ANCHORED_RE.search(text)
    else:
        matches = list(STATE_POSTAL_RE.finditer(text))
        match = matches[-1] if matches else None

    if not match:
        raise InputValidationError(
            f"Could not find state and ZIP code in address '{text}'",
            field="address",
            value=text,
        )

    state, postal_code = match.group(1).upper(), match.group(2)

    segments = [part.strip() for part in text[:match.start(1)].split(",") if part.strip()]
    street = segments[0] if segments else None
    city = segments[-1] if len(segments) > 1 else None

    return ParsedAddress(raw=text, state=state, postal_code=postal_code, street=street, city=city)


def group_items(pairs: Iterable[Tuple[str, Item]], mode: str = QUOTE_MODE) -> List[AddressGroup]:
    """Group (address, item) pairs by normalized address, first-seen order."""
    groups: Dict[str, AddressGroup] = {}
    count = 0

    for raw_address, item in pairs:
        count += 1
        if count > MAX_ITEMS_PER_REQUEST:
            raise InputValidationError(f"Too many items, maximum is {MAX_ITEMS_PER_REQUEST}", field="items")

        key = normalize_address(raw_address) if isinstance(raw_address, str) else ""
        group = groups.get(key)
        if group is None:
            group = AddressGroup(address=parse_address(raw_address, mode))
            groups[key] = group
        group.items.append(item)

    if not groups:
        raise InputValidationError("No items to ship", field="items")

    return list(groups.values())


# ==================== Input Shapes ====================


def parse_item_string(text: str, mode: str = QUOTE_MODE) -> List[AddressGroup]:
    """Shape (a): entries split on newline or ';', each with one size token."""
    pairs = []
    for entry in ENTRY_SPLIT_RE.split(text or ""):
        if not entry.strip():
            continue

        tokens = list(EMBEDDED_SIZE_TOKEN_RE.finditer(entry))
        if len(tokens) != 1:
            raise InputValidationError(
                f"Entry '{entry.strip()}' must contain exactly one LxWxD size",
                field="items",
                value=entry.strip(),
            )

        token = tokens[0]
        item = parse_size_token(token.group(0))
        address = (entry[:token.start()] + " " + entry[token.end():]).strip(ENTRY_SEPARATORS)
        pairs.append((address, item))

    return group_items(pairs, mode)


def _split_list(value: Union[str, Sequence[Any], None], pattern: re.Pattern) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in pattern.split(value) if part.strip()]
    return [part.strip() if isinstance(part, str) else part for part in value]


def parse_parallel_lists(
    addresses: Union[str, Sequence[str]],
    sizes: Union[str, Sequence[str]],
    mode: str = QUOTE_MODE,
) -> List[AddressGroup]:
    """Shape (b): addresses[i] receives sizes[i]."""
    address_list = _split_list(addresses, ADDRESS_LIST_SPLIT_RE)
    size_list = _split_list(sizes, SIZE_LIST_SPLIT_RE)

    if len(address_list) != len(size_list):
        raise InputValidationError(
            f"Got {len(address_list)} addresses but {len(size_list)} sizes",
            field="sizes",
        )

    return group_items(
        ((address, parse_size_token(size)) for address, size in zip(address_list, size_list)),
        mode,
    )


def _expand_structured_item(entry: Any) -> List[Item]:
    if isinstance(entry, str):
        return [parse_size_token(entry)]

    if not isinstance(entry, dict):
        raise InputValidationError(f"Invalid item {entry!r}", field="items")

    quantity = entry.get("quantity", 1)
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InputValidationError(f"Invalid quantity {quantity!r}", field="quantity")

    if "size" in entry:
        item = parse_size_token(entry["size"])
    else:
        try:
            length, width, depth = (float(entry[key]) for key in ("length", "width", "depth"))
        except (KeyError, TypeError, ValueError):
            raise InputValidationError(
                f"Item {entry!r} needs numeric length, width and depth",
                field="items",
            )
        item = _make_item(length, width, depth, f"{length:g}x{width:g}x{depth:g}")

    if quantity > MAX_ITEMS_PER_REQUEST:
        raise InputValidationError(f"Too many items, maximum is {MAX_ITEMS_PER_REQUEST}", field="quantity")

    return [item] * quantity


def parse_structured(entries: Sequence[Dict[str, Any]], mode: str = QUOTE_MODE) -> List[AddressGroup]:
    """Shape (c): [{"address": ..., "items": [...]}]."""
    pairs = []
    for entry in entries or []:
        if not isinstance(entry, dict):
            raise InputValidationError(f"Invalid shipment entry {entry!r}", field="shipments")

        items = entry.get("items")
        if not items:
            raise InputValidationError(
                f"Address '{entry.get('address')}' has no items",
                field="items",
            )

        for raw_item in items:
            for item in _expand_structured_item(raw_item):
                pairs.append((entry.get("address"), item))

    return group_items(pairs, mode)


def parse_address_groups(
    *,
    item_string: Optional[str] = None,
    addresses: Union[str, Sequence[str], None] = None,
    sizes: Union[str, Sequence[str], None] = None,
    shipments: Optional[Sequence[Dict[str, Any]]] = None,
    mode: str = QUOTE_MODE,
) -> List[AddressGroup]:
    """Dispatch to whichever input shape the caller supplied (exactly one)."""
    supplied = [
        name for name, present in (
            ("items", item_string is not None),
            ("addresses/sizes", addresses is not None or sizes is not None),
            ("shipments", shipments is not None),
        ) if present
    ]

    if len(supplied) != 1:
        raise InputValidationError(
            "Provide exactly one of: items string, addresses + sizes, or shipments",
            details={"supplied": supplied},
        )

    if item_string is not None:
        return parse_item_string(item_string, mode)
    if shipments is not None:
        return parse_structured(shipments, mode)
    if addresses is None or sizes is None:
        raise InputValidationError("addresses and sizes must be sent together", field="sizes")
    return parse_parallel_lists(addresses, sizes, mode)
