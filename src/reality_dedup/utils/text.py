"""Text normalization for listing titles and descriptions.

Slovak portals publish the same flat with different diacritics, casing and
marketing fluff ("TOP PONUKA!", "Exkluzívne na predaj"). Everything here folds
text into a comparable ASCII form. Functions are total: any input, including
None, yields a (possibly empty) string.
"""

import re
import unicodedata
from functools import lru_cache
from typing import Final

# Marketing phrases stripped from titles and descriptions (already folded)
DEFAULT_BOILERPLATE_KEYWORDS: Final[tuple[str, ...]] = (
    "top ponuka",
    "super ponuka",
    "skvela ponuka",
    "novinka",
    "exkluzivne",
    "exkluzivny",
    "exkluzivna",
    "na predaj",
    "na prenajom",
    "ihned k dispozicii",
    "bez provizie",
    "vyhodna cena",
    "znizena cena",
    "super cena",
    "zlava",
    "realitna kancelaria",
    "rezervovane",
)

# Generic words that carry no identity in a listing title
TITLE_STOPWORDS: Final[tuple[str, ...]] = (
    "predaj",
    "prenajom",
    "byt",
    "bytu",
    "dom",
    "izba",
    "izbovy",
    "izb",
    "m2",
    "euro",
    "eur",
)

# Agency closing lines that differ between otherwise identical descriptions
DESCRIPTION_FILLER: Final[tuple[str, ...]] = (
    "pre viac informacii",
    "viac informacii",
    "kontaktujte nas",
    "nevahajte nas kontaktovat",
    "dohodnite si obhliadku",
    "obhliadka mozna",
    "obhliadka je mozna",
    "tesime sa na vas",
    "volajte",
)

# Only the opening of a description is compared; portals truncate differently
DESCRIPTION_MAX_CHARS: Final = 500

_NON_ALNUM: Final = re.compile(r"[^a-z0-9]+")
_DIGITS: Final = re.compile(r"\d+")


def fold_diacritics(text: str | None) -> str:
    """Remove combining marks: "Ružinov" -> "Ruzinov", "Košice" -> "Kosice"."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(text: str | None) -> str:
    """Fold diacritics, lower-case, replace punctuation with spaces and collapse whitespace."""
    folded = fold_diacritics(text).lower()
    return _NON_ALNUM.sub(" ", folded).strip()


@lru_cache(maxsize=32)
def _phrase_pattern(phrases: tuple[str, ...]) -> re.Pattern[str] | None:
    normalized = sorted(
        {p for p in (normalize_text(phrase) for phrase in phrases) if p},
        key=len,
        reverse=True,
    )
    if not normalized:
        return None
    return re.compile(r"\b(?:" + "|".join(re.escape(p) for p in normalized) + r")\b")


def strip_boilerplate(
    text: str | None, keywords: tuple[str, ...] = DEFAULT_BOILERPLATE_KEYWORDS
) -> str:
    """Normalize text and remove whole-word occurrences of the given phrases."""
    normalized = normalize_text(text)
    pattern = _phrase_pattern(tuple(keywords))
    if pattern is None or not normalized:
        return normalized
    return " ".join(pattern.sub(" ", normalized).split())


def normalize_title(
    title: str | None, keywords: tuple[str, ...] = DEFAULT_BOILERPLATE_KEYWORDS
) -> str:
    """Reduce a listing title to its identifying words.

    "3-izbový byt, Miletičova, TOP PONUKA" -> "mileticova"
    """
    stripped = strip_boilerplate(title, (*keywords, *TITLE_STOPWORDS))
    without_digits = _DIGITS.sub(" ", stripped)
    # Digit removal can expose stopwords like "3izbovy" -> "izbovy"
    return strip_boilerplate(without_digits, TITLE_STOPWORDS)


def normalize_description(
    description: str | None, keywords: tuple[str, ...] = DEFAULT_BOILERPLATE_KEYWORDS
) -> str:
    """Normalize a description, drop filler phrases and keep the opening characters."""
    stripped = strip_boilerplate(description, (*keywords, *DESCRIPTION_FILLER))
    return stripped[:DESCRIPTION_MAX_CHARS].strip()
