"""Address and district normalization for Slovak listings."""

import re
from dataclasses import dataclass
from typing import Final

from reality_dedup.utils.text import fold_diacritics, normalize_text

# Street type words dropped before comparison ("Nám. SNP" == "Namestie SNP")
STREET_TYPE_WORDS: Final[frozenset[str]] = frozenset(
    {"ulica", "ulice", "ul", "nam", "namestie", "cesta", "trieda", "nabrezie", "nabr", "c"}
)

# Prefixes portals put in front of a district name
DISTRICT_PREFIXES: Final[tuple[str, ...]] = ("mestska cast", "mc", "okres", "obvod", "cast")

# Okres -> boroughs (mestske casti). A listing filed under the okres overlaps
# every borough in it.
CITY_DISTRICTS: Final[dict[str, dict[str, frozenset[str]]]] = {
    "bratislava": {
        "bratislava i": frozenset({"stare mesto"}),
        "bratislava ii": frozenset({"ruzinov", "vrakuna", "podunajske biskupice"}),
        "bratislava iii": frozenset({"nove mesto", "raca", "vajnory"}),
        "bratislava iv": frozenset(
            {
                "karlova ves",
                "dubravka",
                "lamac",
                "devin",
                "devinska nova ves",
                "zahorska bystrica",
            }
        ),
        "bratislava v": frozenset({"petrzalka", "jarovce", "rusovce", "cunovo"}),
    },
    "kosice": {
        "kosice i": frozenset(
            {"stare mesto", "dzungla", "kavecany", "sever", "sidlisko tahanovce", "tahanovce"}
        ),
        "kosice ii": frozenset(
            {"lorincik", "lunik ix", "myslava", "peres", "polov", "sidlisko kvp", "saca", "zapad"}
        ),
        "kosice iii": frozenset({"dargovskych hrdinov", "kosicka nova ves"}),
        "kosice iv": frozenset(
            {"barca", "juh", "krasna", "nad jazerom", "sebastovce", "vysne opatske"}
        ),
    },
}

# Neighbourhoods that portals use instead of the borough name
NEIGHBOURHOOD_ALIASES: Final[dict[str, dict[str, str]]] = {
    "bratislava": {
        "prievoz": "ruzinov",
        "trnavka": "ruzinov",
        "nivy": "ruzinov",
        "ostredky": "ruzinov",
        "pasienky": "nove mesto",
        "kramare": "nove mesto",
        "koliba": "nove mesto",
        "krasnany": "raca",
        "dlhe diely": "karlova ves",
        "dvory": "petrzalka",
        "lupkova": "petrzalka",
    },
    "kosice": {
        "kvp": "sidlisko kvp",
        "terasa": "zapad",
    },
}

KNOWN_CITIES: Final[frozenset[str]] = frozenset(
    {
        "bratislava",
        "kosice",
        "presov",
        "zilina",
        "nitra",
        "banska bystrica",
        "trnava",
        "trencin",
        "martin",
        "poprad",
        "prievidza",
        "zvolen",
        "povazska bystrica",
        "michalovce",
        "nove zamky",
        "spisska nova ves",
        "komarno",
        "levice",
        "humenne",
        "bardejov",
        "liptovsky mikulas",
        "ruzomberok",
        "piestany",
        "senec",
        "pezinok",
        "malacky",
        "dunajska streda",
        "topolcany",
        "cadca",
        "sala",
        "partizanske",
        "hlohovec",
        "senica",
        "skalica",
        "lucenec",
        "rimavska sobota",
    }
)

_POSTAL_CODE: Final = re.compile(r"\b\d{3}\s?\d{2}\b")
_STREET_NUMBER: Final = re.compile(
    r"^(?P<street>.*?[a-z].*?)\s+(?P<number>\d+[a-z]?(?:\s*/\s*(?:\d+[a-z]?|[a-z]))?)$"
)
_ARABIC_OKRES: Final = re.compile(r"^(bratislava|kosice)\s+([1-5])$")
_ROMAN: Final[dict[str, str]] = {"1": "i", "2": "ii", "3": "iii", "4": "iv", "5": "v"}


@dataclass(frozen=True)
class AddressParts:
    """Best-effort components of a free-text address."""

    street: str | None = None
    number: str | None = None
    district: str | None = None
    city: str | None = None
    postal_code: str | None = None
    unresolved: tuple[str, ...] = ()


def normalize_city(city: str | None) -> str:
    """Canonical city key: "Košice - mestská časť Juh" -> "kosice"."""
    normalized = normalize_text(city)
    for known in KNOWN_CITIES:
        if normalized == known or normalized.startswith(known + " "):
            return known
    return normalized


def normalize_street(street: str | None) -> str:
    """Drop street type words: "Nám. SNP" -> "snp", "Miletičova ulica" -> "mileticova"."""
    words = [w for w in normalize_text(street).split() if w not in STREET_TYPE_WORDS]
    return " ".join(words)


def _all_districts(city_key: str) -> frozenset[str]:
    okresy = CITY_DISTRICTS.get(city_key, {})
    boroughs: set[str] = set(okresy)
    for members in okresy.values():
        boroughs |= members
    boroughs |= set(NEIGHBOURHOOD_ALIASES.get(city_key, {}))
    return frozenset(boroughs)


def normalize_district(district: str | None, city_key: str = "") -> str | None:
    """Canonical district key, or None when no district is given.

    Handles "MČ Ružinov", "Bratislava-Ružinov", "Bratislava 2" and
    neighbourhood names such as "Trnávka" (-> "ruzinov").
    """
    normalized = normalize_text(district)
    for prefix in DISTRICT_PREFIXES:
        if normalized.startswith(prefix + " "):
            normalized = normalized[len(prefix) + 1 :]
            break

    arabic = _ARABIC_OKRES.match(normalized)
    if arabic:
        normalized = f"{arabic.group(1)} {_ROMAN[arabic.group(2)]}"

    if city_key and normalized.startswith(city_key + " "):
        remainder = normalized[len(city_key) + 1 :]
        if normalized not in CITY_DISTRICTS.get(city_key, {}):
            normalized = remainder

    if not normalized or normalized == city_key:
        return None
    return NEIGHBOURHOOD_ALIASES.get(city_key, {}).get(normalized, normalized)


def okres_for(city_key: str, district_key: str) -> str | None:
    """Return the okres a borough belongs to, if known."""
    for okres, boroughs in CITY_DISTRICTS.get(city_key, {}).items():
        if district_key in boroughs:
            return okres
    return None


def districts_overlap(city_key: str, first: str | None, second: str | None) -> bool:
    """Whether two district keys may describe the same place.

    A missing district overlaps everything (city-only location), and an okres
    overlaps each of its boroughs ("bratislava ii" vs "ruzinov").
    """
    if first is None or second is None or first == second:
        return True
    return okres_for(city_key, first) == second or okres_for(city_key, second) == first


def _split_street_number(text: str) -> tuple[str, str | None]:
    folded = fold_diacritics(text).lower().strip(" ,.")
    folded = re.sub(r"\s+", " ", folded)
    match = _STREET_NUMBER.match(folded)
    if match:
        number = re.sub(r"\s+", "", match.group("number"))
        return normalize_street(match.group("street")), number
    return normalize_street(folded), None


def tokenize_address(text: str | None, city_hint: str | None = None) -> AddressParts:
    """Split a free-text address into street, number, district and city.

    Never raises; segments that cannot be classified are returned in
    ``unresolved`` rather than guessed.

    Args:
        text: Address as published, e.g. "Miletičova 23, Bratislava - Ružinov, 821 08".
        city_hint: City from the structured listing field, if any.

    Returns:
        AddressParts with whatever could be recognized.
    """
    if not text or not text.strip():
        return AddressParts()

    city_key = normalize_city(city_hint) if city_hint else ""
    street: str | None = None
    number: str | None = None
    district: str | None = None
    city: str | None = None
    postal_code: str | None = None
    unresolved: list[str] = []

    segments = [s.strip() for s in re.split(r",|\s-\s|\|", text) if s.strip()]
    for segment in segments:
        postal = _POSTAL_CODE.search(segment)
        if postal:
            postal_code = re.sub(r"\s", "", postal.group(0))
            segment = _POSTAL_CODE.sub(" ", segment).strip()
            if not segment:
                continue

        normalized = normalize_text(segment)
        if not normalized:
            continue

        segment_city = normalize_city(normalized)
        if segment_city in KNOWN_CITIES or (city_key and normalized == city_key):
            city = city or segment_city
            city_key = city_key or segment_city
            remainder = normalize_district(normalized, segment_city)
            if remainder and remainder in _all_districts(segment_city):
                district = district or remainder
            continue

        district_key = normalize_district(normalized, city_key)
        if district_key and district_key in _all_districts(city_key):
            district = district or district_key
            continue

        if street is None and any(ch.isalpha() for ch in normalized):
            street, number = _split_street_number(segment)
            continue

        unresolved.append(normalized)

    return AddressParts(
        street=street or None,
        number=number,
        district=district,
        city=city,
        postal_code=postal_code,
        unresolved=tuple(unresolved),
    )


def normalize_address(
    street: str | None,
    address: str | None,
    city: str | None = None,
) -> str:
    """Canonical "street number" string for address comparison.

    The structured street field wins; the free-text address fills in what is
    missing. Returns "" when no street can be identified.
    """
    parts = tokenize_address(address, city_hint=city)
    street_name, number = _split_street_number(street) if street else ("", None)
    if not street_name:
        street_name, number = parts.street or "", parts.number
    elif number is None and parts.street == street_name:
        number = parts.number
    if not street_name:
        return ""
    return f"{street_name} {number}" if number else street_name


def split_normalized_address(normalized: str) -> tuple[str, str | None]:
    """Split the output of normalize_address back into (street, number)."""
    street, _, tail = normalized.rpartition(" ")
    if street and tail and tail[0].isdigit():
        return street, tail
    return normalized, None
