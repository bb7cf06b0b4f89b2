from __future__ import annotations


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert / delete / substitute, all cost 1)."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j - 1], previous[j], current[j - 1]))
        previous = current
    return previous[-1]


def text_similarity(a, b) -> float:
    """
    Normalized Levenshtein similarity on lowercased, trimmed strings.

    (max_len - distance) / max_len; identical -> 1.0, either empty -> 0.0.
    """
    if not a or not b:
        return 0.0
    s1 = str(a).strip().lower()
    s2 = str(b).strip().lower()
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0
    longest = max(len(s1), len(s2))
    return (longest - levenshtein_distance(s1, s2)) / longest


def titles_overlap(a: str, b: str) -> bool:
    """Case-insensitive substring test in either direction (admission pre-filter)."""
    s1 = (a or "").lower()
    s2 = (b or "").lower()
    if not s1 or not s2:
        return False
    return s1 in s2 or s2 in s1
