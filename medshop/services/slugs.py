from __future__ import annotations

import re
import unicodedata

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
# Letters NFKD cannot decompose to ASCII.
_TRANSLITERATIONS = str.maketrans({"đ": "d", "Đ": "D", "ß": "ss", "æ": "ae", "ø": "o"})


def slugify(value: str) -> str:
    """Lower-case ASCII slug with single dashes, e.g. ``Máy đo huyết áp`` -> ``may-do-huyet-ap``."""
    text = unicodedata.normalize("NFKD", value.translate(_TRANSLITERATIONS))
    text = text.encode("ascii", "ignore").decode("ascii").lower()
    return _NON_ALNUM.sub("-", text).strip("-")
