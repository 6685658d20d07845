"""Label helpers shared by clustering and trajectory code."""

from typing import Iterable, List, Tuple


def natural_sort_key(label) -> Tuple[int, int, str]:
    """Sort key placing numeric labels in numeric order before other labels."""
    text = str(label)
    if text.isdigit():
        return (0, int(text), "")
    return (1, 0, text)


def natural_sorted(labels: Iterable) -> List[str]:
    """Labels as strings in natural order ("2" before "10")."""
    return sorted((str(label) for label in labels), key=natural_sort_key)
