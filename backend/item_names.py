"""
Item-name normalization.

Supplies are typed by hand on phones and in spreadsheets, so the same
material shows up as "Tomatoes", "tomato", "TOMATO " and so on. The
normalized key is only used to match items; the display name shown to
users is always the original spelling.
"""

import re

_SEPARATORS = re.compile(r"[-_]")
_QUOTES = re.compile(r"[\"'‘’“”]")

# "es" is only a plural ending after these (boxes, benches, glasses);
# otherwise the "s" alone is (apples, oranges, cases)
_SIBILANT_STEMS = ("x", "z", "ch", "sh", "ss")


def singularize(word: str) -> str:
    """Strip one plural suffix from a single lowercase word. At most one rule applies."""
    if word.endswith("oes") and len(word) > 3:
        return word[:-2]
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if word.endswith("ves") and len(word) > 3:
        return word[:-3] + "f"
    if word.endswith("es") and word[:-2].endswith(_SIBILANT_STEMS):
        return word[:-2]
    if word.endswith("s") and len(word) > 1 and not word.endswith(("ss", "us")):
        return word[:-1]
    return word


def normalize_item_name(raw) -> str:
    """
    Map a free-text item name to its matching key.

    Lowercases, turns hyphens and underscores into spaces, drops quote
    characters, trims and collapses whitespace, then singularizes the last
    word:

        tomatoes -> tomato    cherries -> cherry    leaves -> leaf
        boxes -> box          apples -> apple       grass, citrus unchanged

    normalize_item_name(normalize_item_name(x)) == normalize_item_name(x).
    """
    if raw is None:
        return ""

    name = _SEPARATORS.sub(" ", str(raw).lower())
    words = _QUOTES.sub("", name).split()
    if not words:
        return ""

    words[-1] = singularize(words[-1])
    return " ".join(words)
