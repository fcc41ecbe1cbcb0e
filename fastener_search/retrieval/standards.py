"""Fastener standard codes: normalization and the DIN/ISO equivalence table.

The table is built once at import into an immutable ``StandardTable`` and
handed to the classifier and reranker. Tests can build their own table with
``StandardTable.from_entries``.
"""

import logging
import re
from collections import defaultdict
from collections.abc import Iterable
from types import MappingProxyType
from typing import NamedTuple

from fastener_search.models.search import StandardCode, StandardRecord, StandardSuggestion

logger = logging.getLogger(__name__)

# "EN" is only accepted in uppercase: lowercase "en" is a Spanish preposition
# ("tornillos en acero") and would otherwise swallow the next number.
_ORGS = r"DIN|ISO|(?-i:EN)|ANSI|ASME|BS|UNI|NF|JIS"

STANDARD_PATTERN = re.compile(
    rf"\b({_ORGS})[\s\-_.]*(\d+[A-Z]?)(?:-(\d{{1,2}})(?![.,]\d))?\b",
    re.IGNORECASE,
)


def _code_from_match(match: re.Match) -> StandardCode:
    org, number, part = match.groups()
    return StandardCode(org=org.upper(), number=number.upper(), part=part)


def normalize_standard_code(raw: object) -> StandardCode | None:
    """Parse a single standard reference.

    "din933", "DIN-933" and "DIN 933" all give the same code. Anything that
    is not exactly one ``{ORG} {NUMBER}`` reference gives None.
    """
    if isinstance(raw, StandardCode):
        return raw
    if not isinstance(raw, str):
        return None
    match = STANDARD_PATTERN.fullmatch(raw.strip().strip(".,;:"))
    if match is None:
        return None
    return _code_from_match(match)


def extract_standard_codes(text: object) -> list[StandardCode]:
    """All standard references in free text, in order of position."""
    if not isinstance(text, str) or not text:
        return []
    return [_code_from_match(m) for m in STANDARD_PATTERN.finditer(text)]


def format_standard_for_display(code: StandardCode | str) -> str:
    """Canonical display form ("DIN 933").

    Strings that do not parse as a standard are returned trimmed.
    """
    normalized = normalize_standard_code(code)
    if normalized is None:
        return code.strip() if isinstance(code, str) else str(code)
    return normalized.display


class StandardEntry(NamedTuple):
    """Source row of the standard table."""

    code: str
    description: str
    product_type: str
    equivalent: tuple[str, ...] = ()
    similar: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()


def _parse(code: str) -> StandardCode:
    parsed = normalize_standard_code(code)
    if parsed is None:
        raise ValueError(f"Invalid standard code in table: {code!r}")
    return parsed


class StandardTable:
    """Read-only lookup of standard records and declared equivalences.

    Equivalence is symmetric: declaring ISO 4017 as equivalent of DIN 933
    also makes DIN 933 an equivalent of ISO 4017. Lookups are keyed by the
    normalized code.
    """

    def __init__(
        self,
        records: Iterable[StandardRecord],
        equivalences: Iterable[tuple[StandardCode, StandardCode]],
    ):
        self._records = MappingProxyType({record.code.key: record for record in records})

        pairs: dict[str, set[StandardCode]] = defaultdict(set)
        for a, b in equivalences:
            if a.key == b.key:
                continue
            pairs[a.key].add(b)
            pairs[b.key].add(a)
        self._equivalents = MappingProxyType(
            {key: frozenset(codes) for key, codes in pairs.items()}
        )

    @classmethod
    def from_entries(cls, entries: Iterable[StandardEntry]) -> "StandardTable":
        """Build a table from ``StandardEntry`` rows.

        Raises:
            ValueError: If a row carries a code that does not parse
        """
        records = []
        equivalences = []
        for entry in entries:
            code = _parse(entry.code)
            records.append(
                StandardRecord(
                    code=code,
                    description=entry.description,
                    product_type=entry.product_type,
                    similar=tuple(_parse(s) for s in entry.similar),
                    keywords=entry.keywords,
                )
            )
            equivalences.extend((code, _parse(eq)) for eq in entry.equivalent)
        return cls(records, equivalences)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, code: object) -> bool:
        normalized = normalize_standard_code(code)
        return normalized is not None and normalized.key in self._records

    @property
    def records(self) -> tuple[StandardRecord, ...]:
        return tuple(self._records.values())

    def find_standard(self, code: StandardCode | str) -> StandardRecord | None:
        normalized = normalize_standard_code(code)
        if normalized is None:
            return None
        return self._records.get(normalized.key)

    def get_equivalents_fast(self, code: StandardCode | str) -> frozenset[StandardCode]:
        """Codes declared equivalent to ``code``, excluding ``code`` itself."""
        normalized = normalize_standard_code(code)
        if normalized is None:
            return frozenset()
        return self._equivalents.get(normalized.key, frozenset())

    def are_equivalent(self, a: StandardCode | str, b: StandardCode | str) -> bool:
        """True for identical codes and for declared equivalents."""
        first = normalize_standard_code(a)
        second = normalize_standard_code(b)
        if first is None or second is None:
            return False
        if first.key == second.key:
            return True
        return second in self._equivalents.get(first.key, frozenset())

    def find_similar(self, code: StandardCode | str) -> tuple[StandardCode, ...]:
        """Related but not interchangeable standards (e.g. DIN 931 for DIN 933)."""
        record = self.find_standard(code)
        return record.similar if record else ()

    def search_by_keyword(self, keyword: str) -> list[StandardRecord]:
        """Records whose code, description or keywords contain ``keyword``."""
        needle = keyword.strip().lower() if isinstance(keyword, str) else ""
        if not needle:
            return []
        compact = needle.replace(" ", "")
        results = []
        for record in self._records.values():
            if compact in record.code.key.lower():
                results.append(record)
            elif needle in record.description.lower():
                results.append(record)
            elif any(needle in kw.lower() for kw in record.keywords):
                results.append(record)
        return results

    def standards_for_product_type(self, product_type: str) -> list[StandardRecord]:
        return [r for r in self._records.values() if r.product_type == product_type]

    def get_standard_suggestions(self, code: StandardCode | str) -> StandardSuggestion | None:
        """Display name and equivalence list for a known standard."""
        record = self.find_standard(code)
        if record is None:
            return None
        equivalents = sorted(self.get_equivalents_fast(record.code), key=lambda c: c.key)
        return StandardSuggestion(
            code=record.code.display,
            description=record.description,
            product_type=record.product_type,
            equivalents=tuple(c.display for c in equivalents),
            similar=tuple(c.display for c in record.similar),
        )


STANDARD_ENTRIES: tuple[StandardEntry, ...] = (
    # Hex bolts
    StandardEntry("DIN 933", "Hexagon head bolt, full thread", "bolt",
                  equivalent=("ISO 4017",), similar=("DIN 931", "ISO 4014"),
                  keywords=("hex bolt", "full thread", "hexagon", "perno hexagonal")),
    StandardEntry("DIN 931", "Hexagon head bolt, partial thread", "bolt",
                  equivalent=("ISO 4014",), similar=("DIN 933", "ISO 4017"),
                  keywords=("hex bolt", "partial thread", "hexagon", "perno")),
    StandardEntry("DIN 960", "Hexagon head bolt, partial thread, fine pitch", "bolt",
                  equivalent=("ISO 8765",), similar=("DIN 961",),
                  keywords=("hex bolt", "fine thread", "fine pitch")),
    StandardEntry("DIN 961", "Hexagon head bolt, full thread, fine pitch", "bolt",
                  equivalent=("ISO 8676",), similar=("DIN 960",),
                  keywords=("hex bolt", "fine thread", "full thread")),
    StandardEntry("ISO 4017", "Hexagon head screw, full thread", "bolt",
                  similar=("ISO 4014", "DIN 931"),
                  keywords=("hex bolt", "full thread", "hexagon")),
    StandardEntry("ISO 4014", "Hexagon head bolt, partial thread", "bolt",
                  similar=("ISO 4017", "DIN 933"),
                  keywords=("hex bolt", "partial thread", "hexagon")),
    StandardEntry("ISO 8765", "Hexagon head bolt, fine pitch thread", "bolt",
                  keywords=("hex bolt", "fine pitch", "fine thread")),
    StandardEntry("ISO 8676", "Hexagon head screw, full thread, fine pitch", "bolt",
                  keywords=("hex bolt", "fine pitch", "full thread")),
    # Socket cap screws
    StandardEntry("DIN 912", "Socket head cap screw", "screw",
                  equivalent=("ISO 4762",), similar=("DIN 7984",),
                  keywords=("socket cap", "allen", "cylinder head", "shcs", "tornillo allen")),
    StandardEntry("DIN 7984", "Low head socket cap screw", "screw",
                  similar=("DIN 912", "ISO 4762", "ISO 14580"),
                  keywords=("low head", "socket cap", "thin head")),
    StandardEntry("DIN 7991", "Countersunk socket head cap screw", "screw",
                  equivalent=("ISO 10642",),
                  keywords=("countersunk", "flat head", "socket", "csk")),
    StandardEntry("ISO 4762", "Socket head cap screw", "screw",
                  keywords=("socket cap", "allen", "shcs")),
    StandardEntry("ISO 10642", "Countersunk socket head cap screw", "screw",
                  keywords=("countersunk", "flat head", "socket")),
    StandardEntry("ISO 7380", "Button head socket cap screw", "screw",
                  keywords=("button head", "dome head", "socket")),
    StandardEntry("ISO 14580", "Hexalobular socket cheese head screw", "screw",
                  keywords=("torx", "cheese head", "low head")),
    # Set screws
    StandardEntry("DIN 913", "Socket set screw, flat point", "screw",
                  equivalent=("ISO 4026",), keywords=("set screw", "grub screw", "flat point")),
    StandardEntry("DIN 914", "Socket set screw, cone point", "screw",
                  equivalent=("ISO 4027",), keywords=("set screw", "grub screw", "cone point")),
    StandardEntry("DIN 915", "Socket set screw, dog point", "screw",
                  equivalent=("ISO 4028",), keywords=("set screw", "grub screw", "dog point")),
    StandardEntry("DIN 916", "Socket set screw, cup point", "screw",
                  equivalent=("ISO 4029",), keywords=("set screw", "grub screw", "cup point")),
    # Machine screws
    StandardEntry("DIN 965", "Countersunk head screw, Phillips", "screw",
                  equivalent=("ISO 7046",), keywords=("countersunk", "phillips", "machine screw")),
    StandardEntry("DIN 966", "Raised countersunk head screw", "screw",
                  equivalent=("ISO 7047",), keywords=("raised countersunk", "oval head")),
    StandardEntry("DIN 84", "Slotted cheese head screw", "screw",
                  equivalent=("ISO 1207",), keywords=("cheese head", "slotted", "machine screw")),
    StandardEntry("DIN 85", "Slotted pan head screw", "screw",
                  equivalent=("ISO 1580",), keywords=("pan head", "slotted")),
    StandardEntry("DIN 7985", "Phillips pan head screw", "screw",
                  equivalent=("ISO 7045",), keywords=("pan head", "phillips", "machine screw")),
    # Nuts
    StandardEntry("DIN 934", "Hexagon nut", "nut",
                  equivalent=("ISO 4032", "ISO 4033"), similar=("DIN 439",),
                  keywords=("hex nut", "hexagon nut", "tuerca hexagonal")),
    StandardEntry("DIN 439", "Hexagon thin nut (jam nut)", "nut",
                  equivalent=("ISO 4035",), keywords=("thin nut", "jam nut", "low nut")),
    StandardEntry("DIN 985", "Prevailing torque hex nut with nylon insert (Nyloc)", "nut",
                  equivalent=("ISO 10511",), similar=("ISO 7040",),
                  keywords=("nyloc", "lock nut", "prevailing torque", "self-locking")),
    StandardEntry("DIN 982", "Prevailing torque hex nut with nylon insert, high type", "nut",
                  equivalent=("ISO 7040",), similar=("DIN 985",),
                  keywords=("nyloc", "lock nut", "high nut")),
    StandardEntry("DIN 1587", "Hexagon domed cap nut", "nut",
                  keywords=("dome nut", "cap nut", "acorn nut")),
    StandardEntry("DIN 6923", "Hexagon flange nut", "nut",
                  equivalent=("ISO 4161",), keywords=("flange nut", "serrated flange")),
    StandardEntry("DIN 6334", "Hexagon coupling nut", "nut",
                  keywords=("coupling nut", "extension nut", "long nut")),
    StandardEntry("ISO 4032", "Hexagon nut, style 1", "nut",
                  keywords=("hex nut", "hexagon nut")),
    StandardEntry("ISO 4033", "Hexagon nut, style 2 (thicker)", "nut",
                  keywords=("hex nut", "thick nut")),
    StandardEntry("ISO 7040", "Prevailing torque hexagon nut with nylon insert, style 1", "nut",
                  similar=("DIN 985", "ISO 10511"), keywords=("lock nut", "nyloc")),
    StandardEntry("ISO 10511", "Prevailing torque hex nut, thin, with nylon insert", "nut",
                  keywords=("nyloc", "thin lock nut")),
    # Washers
    StandardEntry("DIN 125", "Plain washer, form A and B", "washer",
                  equivalent=("ISO 7089", "ISO 7090"),
                  keywords=("flat washer", "plain washer", "arandela plana")),
    StandardEntry("DIN 127", "Spring lock washer", "washer",
                  keywords=("spring washer", "lock washer", "split washer", "grower")),
    StandardEntry("DIN 433", "Plain washer, small series", "washer",
                  equivalent=("ISO 7092",), keywords=("small washer", "narrow washer")),
    StandardEntry("DIN 440", "Plain washer for wood constructions", "washer",
                  equivalent=("ISO 7094",),
                  keywords=("large washer", "timber washer", "construction washer")),
    StandardEntry("DIN 6796", "Conical spring washer (Belleville)", "washer",
                  keywords=("belleville washer", "disc spring", "conical washer")),
    StandardEntry("DIN 6798", "Serrated lock washer", "washer",
                  keywords=("serrated washer", "tooth lock washer", "star washer")),
    StandardEntry("DIN 9021", "Plain washer, large series", "washer",
                  equivalent=("ISO 7093",), keywords=("large washer", "fender washer", "penny washer")),
    StandardEntry("ISO 7089", "Plain washer, normal series, product grade A", "washer",
                  keywords=("flat washer", "plain washer")),
    StandardEntry("ISO 7090", "Plain washer, chamfered, normal series", "washer",
                  keywords=("flat washer", "chamfered washer")),
    # Threaded rods and studs
    StandardEntry("DIN 975", "Threaded rod", "threaded_rod",
                  keywords=("threaded rod", "all-thread", "varilla roscada")),
    StandardEntry("DIN 976", "Stud bolt (threaded both ends)", "threaded_rod",
                  keywords=("stud", "stud bolt", "double end stud")),
    StandardEntry("DIN 938", "Stud bolt, screw-in end 1d", "threaded_rod",
                  keywords=("stud", "stud bolt")),
    StandardEntry("DIN 939", "Stud bolt, screw-in end 1.25d", "threaded_rod",
                  keywords=("stud", "interference fit stud")),
    # Pins
    StandardEntry("DIN 94", "Split pin (cotter pin)", "pin",
                  equivalent=("ISO 1234",), keywords=("split pin", "cotter pin")),
    StandardEntry("DIN 7", "Parallel pin", "pin",
                  equivalent=("ISO 2338",), keywords=("parallel pin", "dowel pin")),
    StandardEntry("DIN 1481", "Spring type straight pin, slotted", "pin",
                  equivalent=("ISO 8752",), keywords=("spring pin", "roll pin", "slotted pin")),
    StandardEntry("DIN 6325", "Parallel pin, hardened", "pin",
                  equivalent=("ISO 8734",), keywords=("dowel pin", "parallel pin", "hardened")),
    # Rivets and others
    StandardEntry("DIN 7337", "Blind rivet", "rivet",
                  keywords=("blind rivet", "pop rivet", "remache")),
    StandardEntry("DIN 3568", "Heavy pipe clamp", "clamp",
                  keywords=("pipe clamp",)),
    StandardEntry("DIN 741", "Wire rope clip", "clamp",
                  keywords=("wire rope clip", "cable clamp")),
)

DEFAULT_STANDARD_TABLE = StandardTable.from_entries(STANDARD_ENTRIES)


def find_standard(
    code: StandardCode | str, table: StandardTable = DEFAULT_STANDARD_TABLE
) -> StandardRecord | None:
    """Look up static metadata for a known standard."""
    return table.find_standard(code)


def get_equivalents_fast(
    code: StandardCode | str, table: StandardTable = DEFAULT_STANDARD_TABLE
) -> frozenset[StandardCode]:
    """Declared equivalents of ``code`` (empty for unknown codes)."""
    return table.get_equivalents_fast(code)
