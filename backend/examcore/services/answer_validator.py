"""Answer correctness predicate shared by study feedback and test scoring."""

from collections.abc import Iterable


def validate(correct_indices: Iterable[int], selected_indices: Iterable[int]) -> bool:
    """
    Decide whether a selection matches a question's correct-answer set.

    Both sides are treated as sets, so order and duplicates do not matter.
    An empty selection is never correct, even against an empty answer set.

    Args:
        correct_indices: Correct option indices for the question
        selected_indices: Option indices the user selected

    Returns:
        True iff the two sets are equal and the selection is non-empty
    """
    selected = set(selected_indices or ())
    if not selected:
        return False
    return selected == set(correct_indices or ())
