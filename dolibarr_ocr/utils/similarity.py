"""
String similarity helpers used by every fuzzy match against Dolibarr records.

Comparison is case-sensitive and does no Unicode normalization; callers
lowercase and trim before calling.
"""


def levenshtein_distance(s1: str, s2: str) -> int:
    """
    Calculate the Levenshtein distance between two strings.

    Substitution, insertion and deletion all cost 1.

    Args:
        s1: First string
        s2: Second string

    Returns:
        Number of single-character edits needed to turn s1 into s2
    """
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current_row = [i]
        for j, c2 in enumerate(s2, start=1):
            if c1 == c2:
                current_row.append(previous_row[j - 1])
            else:
                current_row.append(
                    min(
                        previous_row[j - 1] + 1,  # substitution
                        current_row[j - 1] + 1,   # insertion
                        previous_row[j] + 1,      # deletion
                    )
                )
        previous_row = current_row

    return previous_row[-1]


def similarity(s1: str, s2: str) -> float:
    """
    Similarity ratio in [0, 1] derived from the edit distance.

    Defined as (max_len - distance) / max_len. Two empty strings are
    identical and score 1.0.
    """
    max_len = max(len(s1), len(s2))
    if max_len == 0:
        return 1.0
    return (max_len - levenshtein_distance(s1, s2)) / max_len
