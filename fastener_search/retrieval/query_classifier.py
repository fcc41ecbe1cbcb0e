"""Query classification for fastener searches.

Turns a free-text query such as "DIN 933 M8 A2" into a ``QueryAnalysis``.
Each attribute has its own extractor (a pure function returning an optional
typed value); ``QueryClassifier`` combines them and picks the query type.
"""

import logging
import re
from collections.abc import Callable

from fastener_search.models.search import (
    MaterialSpec,
    QueryAnalysis,
    QueryType,
    StandardCode,
    ThreadSpec,
)
from fastener_search.retrieval.standards import (
    DEFAULT_STANDARD_TABLE,
    STANDARD_PATTERN,
    StandardTable,
    normalize_standard_code,
)

logger = logging.getLogger(__name__)

_NUMBER = r"\d+(?:[.,]\d+)?"
_SEP = r"\s*[x×*]\s*"

THREAD_PATTERN = re.compile(
    rf"\bM(\d{{1,2}}(?:[.,]\d+)?)(?:{_SEP}({_NUMBER}))?(?:{_SEP}({_NUMBER}))?(?!\d|[.,]\d)",
    re.IGNORECASE,
)

# Largest second number read as a pitch in "M10x1.25"; above it, "M8x40" is a length.
MAX_FINE_PITCH = 3.0


def _to_float(raw: str) -> float:
    return float(raw.replace(",", "."))


def extract_thread(text: object) -> ThreadSpec | None:
    """Parse the first metric thread designation in ``text``.

    "M8" gives diameter only, "M8x40" a length, "M10x1.25" a fine pitch and
    "M10x1.25x50" both.
    """
    if not isinstance(text, str):
        return None
    match = THREAD_PATTERN.search(text)
    if match is None:
        return None

    diameter = _to_float(match.group(1))
    if diameter <= 0:
        return None

    second, third = match.group(2), match.group(3)
    pitch = None
    length = None
    if second and third:
        pitch = _to_float(second)
        length = _to_float(third)
    elif second:
        value = _to_float(second)
        if value <= MAX_FINE_PITCH and value < diameter / 3:
            pitch = value
        else:
            length = value

    return ThreadSpec(
        diameter=diameter,
        length=length or None,
        pitch=pitch or None,
    )


def _stainless(code: str) -> Callable[[re.Match], MaterialSpec]:
    def build(match: re.Match) -> MaterialSpec:
        grade = match.groupdict().get("grade")
        return MaterialSpec(code=code, base="stainless", grade=f"{code}-{grade}" if grade else None)

    return build


def _fixed(code: str, base: str | None = None) -> Callable[[re.Match], MaterialSpec]:
    def build(match: re.Match) -> MaterialSpec:
        return MaterialSpec(code=code, base=base or code)

    return build


def _property_class(match: re.Match) -> MaterialSpec:
    return MaterialSpec(code=match.group("grade"), base="steel")


# Checked in order; the first pattern that matches anywhere in the text wins,
# so specific grades are listed before generic material words.
MATERIAL_PATTERNS: tuple[tuple[re.Pattern, Callable[[re.Match], MaterialSpec]], ...] = (
    (re.compile(r"\bA2(?:[\s-]?(?P<grade>50|70|80))?\b", re.IGNORECASE), _stainless("A2")),
    (re.compile(r"\bA4(?:[\s-]?(?P<grade>50|70|80))?\b", re.IGNORECASE), _stainless("A4")),
    (re.compile(r"(?:\bAISI\s*)?\b304L?\b|\b18/8\b|\b1\.4301\b", re.IGNORECASE), _stainless("A2")),
    (re.compile(r"(?:\bAISI\s*)?\b316(?:L|Ti)?\b|\b1\.440[14]\b", re.IGNORECASE), _stainless("A4")),
    (
        re.compile(r"(?<![\d.,])(?:(?:clase|class)\s*)?(?P<grade>4\.8|8\.8|10\.9|12\.9)(?![\d.,])", re.IGNORECASE),
        _property_class,
    ),
    (re.compile(r"\b(?:brass|lat[oó]n)\b", re.IGNORECASE), _fixed("brass")),
    (re.compile(r"\b(?:alumini?um|aluminio)\b", re.IGNORECASE), _fixed("aluminium")),
    (re.compile(r"\b(?:titanium|titanio)\b", re.IGNORECASE), _fixed("titanium")),
    (re.compile(r"\b(?:nylon|poliamida|polyamide)\b", re.IGNORECASE), _fixed("nylon")),
    (re.compile(r"\b(?:stainless|inox(?:idable)?)\b", re.IGNORECASE), _fixed("stainless")),
    (re.compile(r"\b(?:zinc(?:ado)?|zinc[\s-]plated|galvani[sz]ed|galvanizado)\b", re.IGNORECASE),
     _fixed("zinc", base="steel")),
    (re.compile(r"\b(?:steel|acero)\b", re.IGNORECASE), _fixed("steel")),
)


def extract_material(text: object) -> MaterialSpec | None:
    """Recognize a material or property class (A2, A4-80, 8.8, brass, ...)."""
    if not isinstance(text, str) or not text:
        return None
    for pattern, build in MATERIAL_PATTERNS:
        match = pattern.search(text)
        if match:
            return build(match)
    return None


# Multi-word phrases come first so "socket cap screw" is not read as "screw".
PRODUCT_VOCABULARY: tuple[tuple[str, str], ...] = (
    ("hex bolt", "bolt"),
    ("hexagon bolt", "bolt"),
    ("socket cap screw", "screw"),
    ("socket screw", "screw"),
    ("hex nut", "nut"),
    ("hexagon nut", "nut"),
    ("lock nut", "nut"),
    ("flat washer", "washer"),
    ("spring washer", "washer"),
    ("lock washer", "washer"),
    ("threaded rod", "threaded_rod"),
    ("set screw", "screw"),
    ("machine screw", "screw"),
    ("cap screw", "screw"),
    ("varilla roscada", "threaded_rod"),
    ("cabeza hexagonal", "bolt"),
    ("cabeza allen", "screw"),
    ("bolts", "bolt"),
    ("bolt", "bolt"),
    ("screws", "screw"),
    ("screw", "screw"),
    ("nuts", "nut"),
    ("nut", "nut"),
    ("washers", "washer"),
    ("washer", "washer"),
    ("studs", "threaded_rod"),
    ("stud", "threaded_rod"),
    ("rods", "threaded_rod"),
    ("rod", "threaded_rod"),
    ("anchors", "anchor"),
    ("anchor", "anchor"),
    ("rivets", "rivet"),
    ("rivet", "rivet"),
    ("pins", "pin"),
    ("pin", "pin"),
    ("inserts", "insert"),
    ("insert", "insert"),
    ("pernos", "bolt"),
    ("perno", "bolt"),
    ("tornillos", "screw"),
    ("tornillo", "screw"),
    ("tuercas", "nut"),
    ("tuerca", "nut"),
    ("arandelas", "washer"),
    ("arandela", "washer"),
    ("esparragos", "threaded_rod"),
    ("espárragos", "threaded_rod"),
    ("esparrago", "threaded_rod"),
    ("espárrago", "threaded_rod"),
    ("tacos", "anchor"),
    ("taco", "anchor"),
    ("remaches", "rivet"),
    ("remache", "rivet"),
    ("pasadores", "pin"),
    ("pasador", "pin"),
    ("insertos", "insert"),
    ("inserto", "insert"),
)

def _phrase_pattern(phrase: str) -> re.Pattern:
    words = r"\s+".join(re.escape(word) for word in phrase.split())
    return re.compile(rf"\b{words}\b", re.IGNORECASE)


_PRODUCT_PATTERNS = tuple(
    (_phrase_pattern(phrase), product_type) for phrase, product_type in PRODUCT_VOCABULARY
)


def extract_product_type(text: object) -> str | None:
    """Map the first recognized product word or phrase to its product type."""
    if not isinstance(text, str) or not text:
        return None
    for pattern, product_type in _PRODUCT_PATTERNS:
        if pattern.search(text):
            return product_type
    return None


HEAD_TYPE_PATTERN = re.compile(
    r"\b(hex(?:agon(?:al)?)?|socket|allen|countersunk|avellanad[oa]|flat\s*head|pan\s*head"
    r"|button\s*head|cheese|flange|round|truss|dome)\b",
    re.IGNORECASE,
)

# First matching prefix wins
_HEAD_TYPES: tuple[tuple[str, str], ...] = (
    ("hex", "hex"),
    ("socket", "socket"),
    ("allen", "socket"),
    ("countersunk", "countersunk"),
    ("avellanad", "countersunk"),
    ("flat", "countersunk"),
    ("pan", "pan"),
    ("button", "button"),
    ("cheese", "cheese"),
    ("flange", "flange"),
    ("round", "round"),
    ("truss", "truss"),
    ("dome", "dome"),
)


def extract_head_type(text: object) -> str | None:
    """Head shape named in ``text``: "hex", "socket", "countersunk", "pan", ..."""
    if not isinstance(text, str):
        return None
    match = HEAD_TYPE_PATTERN.search(text)
    if match is None:
        return None
    word = match.group(1).lower()
    for prefix, head_type in _HEAD_TYPES:
        if word.startswith(prefix):
            return head_type
    return None


_SPANISH_WORDS = re.compile(
    r"\b(tornillos?|tuercas?|arandelas?|pernos?|varillas?|inoxidable|acero|lat[oó]n|aluminio"
    r"|galvanizado|avellanado|hexagonal)\b",
    re.IGNORECASE,
)
_ENGLISH_WORDS = re.compile(
    r"\b(bolts?|screws?|nuts?|washers?|stainless|steel|brass|alumini?um|galvani[sz]ed"
    r"|countersunk|hexagon)\b",
    re.IGNORECASE,
)


def detect_language(text: object) -> str:
    """"es", "en" or "mixed" from the product vocabulary; "en" when unclear."""
    if not isinstance(text, str):
        return "en"
    spanish = _SPANISH_WORDS.search(text) is not None
    english = _ENGLISH_WORDS.search(text) is not None
    if spanish and english:
        return "mixed"
    return "es" if spanish else "en"


SUPPLIER_PATTERN = re.compile(
    r"\b(reyher|w(?:ü|u|ue)rth|bossard|fabory|hilti|fischer)\b",
    re.IGNORECASE,
)

_SUPPLIER_ALIASES = {"würth": "wurth", "wuerth": "wurth"}


def extract_supplier(text: object) -> str | None:
    """Recognize a supplier name; Würth spellings fold to "wurth"."""
    if not isinstance(text, str):
        return None
    match = SUPPLIER_PATTERN.search(text)
    if match is None:
        return None
    name = match.group(1).lower()
    return _SUPPLIER_ALIASES.get(name, name)


def extract_standard(text: object) -> tuple[StandardCode, str] | None:
    """First standard reference in ``text``, with the raw text it came from."""
    if not isinstance(text, str):
        return None
    match = STANDARD_PATTERN.search(text)
    if match is None:
        return None
    code = normalize_standard_code(match.group(0))
    if code is None:
        return None
    return code, match.group(0)


# A standard followed by at most this much other text is a plain code lookup
SHORT_REMAINDER = 10


def classification_confidence(
    query_type: QueryType,
    remainder: str,
    attribute_count: int,
    has_product_type: bool,
) -> float:
    """How sure the classifier is about ``query_type``, in [0, 1].

    Args:
        query_type: Chosen query type
        remainder: Query text left once the standard reference is removed
        attribute_count: Number of attributes extracted from the text
        has_product_type: Whether the text names a product type
    """
    if query_type == QueryType.EXACT_STANDARD:
        return 0.95 if len(remainder.strip()) < SHORT_REMAINDER else 0.85
    if query_type == QueryType.THREAD_SPEC:
        return 0.8 if attribute_count <= 2 else 0.85
    if query_type == QueryType.MATERIAL:
        return 0.7
    if has_product_type:
        return 0.7 if attribute_count <= 2 else 0.85
    return 0.6 if attribute_count else 0.5


class QueryClassifier:
    """Reads structured intent out of free-text fastener queries.

    Classification is total: any input, including non-strings and empty
    text, yields a ``QueryAnalysis`` (descriptive with nothing extracted).
    """

    def __init__(self, table: StandardTable = DEFAULT_STANDARD_TABLE):
        self.table = table

    def classify(self, query: object) -> QueryAnalysis:
        """Classify a query and extract its attributes.

        A standard reference makes the query ``exact_standard``; otherwise a
        thread makes it ``thread_spec``; a material alone (no product word)
        makes it ``material``; everything else is ``descriptive``. A known
        standard also sets ``inferred_product_type`` from the table.

        Args:
            query: Raw query text

        Returns:
            QueryAnalysis for this query
        """
        if not isinstance(query, str) or not query.strip():
            return QueryAnalysis(query=query if isinstance(query, str) else "")

        text = query.strip()
        standard = extract_standard(text)
        thread = extract_thread(text)

        # Standard and thread numbers ("DIN 316", "M8x304") must not read as materials
        without_standards = STANDARD_PATTERN.sub(" ", text)
        material = extract_material(THREAD_PATTERN.sub(" ", without_standards))
        product_type = extract_product_type(without_standards)
        head_type = extract_head_type(without_standards)
        supplier = extract_supplier(text)

        code = None
        raw = None
        inferred_product_type = None
        equivalents: tuple[StandardCode, ...] = ()
        if standard is not None:
            code, raw = standard
            equivalents = tuple(
                sorted(self.table.get_equivalents_fast(code), key=lambda c: c.key)
            )
            record = self.table.find_standard(code)
            if record is not None:
                inferred_product_type = record.product_type

        if code is not None:
            query_type = QueryType.EXACT_STANDARD
        elif thread is not None:
            query_type = QueryType.THREAD_SPEC
        elif material is not None and product_type is None:
            query_type = QueryType.MATERIAL
        else:
            query_type = QueryType.DESCRIPTIVE

        attributes = (code, thread, material, product_type, head_type, supplier)
        confidence = classification_confidence(
            query_type,
            remainder=text.replace(raw, " ", 1) if raw else text,
            attribute_count=sum(1 for value in attributes if value is not None),
            has_product_type=product_type is not None,
        )

        analysis = QueryAnalysis(
            query=text,
            query_type=query_type,
            extracted_standard=code,
            standard_raw=raw,
            extracted_thread=thread,
            extracted_material=material,
            extracted_product_type=product_type,
            extracted_head_type=head_type,
            extracted_supplier=supplier,
            inferred_product_type=inferred_product_type,
            equivalent_standards=equivalents,
            requires_exact_match=code is not None,
            confidence=confidence,
            detected_language=detect_language(text),
        )
        logger.debug(f"Classified query {text!r}: {analysis.summary()}")
        return analysis


_default_classifier = QueryClassifier()


def classify_query(query: object) -> QueryAnalysis:
    """Classify with the default standard table."""
    return _default_classifier.classify(query)
