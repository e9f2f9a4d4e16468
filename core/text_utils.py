import re


def normalize_text(s) -> str:
    """Lowercase, replace punctuation with spaces, collapse whitespace."""
    if s is None:
        return ""
    s = str(s).lower().strip()
    s = re.sub(r"[^a-z0-9\s]", " ", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s


def significant_tokens(s, ignored: set[str] | frozenset[str] = frozenset()) -> list[str]:
    """Tokens of the normalized string with filler words removed."""
    return [t for t in normalize_text(s).split(" ") if t and t not in ignored]
