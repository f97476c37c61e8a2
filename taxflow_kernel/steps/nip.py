"""Polish NIP (tax identification number) checksum."""

import re

_WEIGHTS = (6, 5, 7, 2, 3, 4, 5, 6, 7)
_SEPARATORS = re.compile(r"[\s-]")


def normalize_nip(nip: str) -> str:
    return _SEPARATORS.sub("", nip)


def is_valid_nip(nip: str | None) -> bool:
    """Ten digits, not all identical, weighted mod-11 control digit.

    A weighted sum of 10 (mod 11) maps to control digit 0.
    """
    if not nip or not isinstance(nip, str):
        return False
    clean = normalize_nip(nip)
    if len(clean) != 10 or not clean.isdigit():
        return False
    if len(set(clean)) == 1:
        return False
    checksum = sum(int(d) * w for d, w in zip(clean, _WEIGHTS)) % 11
    control = 0 if checksum == 10 else checksum
    return int(clean[9]) == control
