"""Location results and the splice writer shared by every text patch."""
import difflib
import logging
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from ..errors import PatchError

LOG = logging.getLogger(__name__)

DIFF_CONTEXT = 40


@dataclass(frozen=True)
class LocationResult:
    """Half-open [start_index, end_index) range plus captured identifiers.

    variant tells the writer which generation of the target matched when a
    patch supports more than one.
    """
    start_index: int
    end_index: int
    identifiers: Tuple[str, ...] = ()
    variant: str = ""


Edit = Tuple[LocationResult, str]


def show_diff(old: str, new: str, location: LocationResult, replacement: str):
    if not LOG.isEnabledFor(logging.DEBUG):
        return
    lo = max(0, location.start_index - DIFF_CONTEXT)
    before = old[lo:location.end_index + DIFF_CONTEXT]
    after = new[lo:location.start_index + len(replacement) + DIFF_CONTEXT]
    for line in difflib.unified_diff([before], [after], "before", "after", lineterm="", n=0):
        LOG.debug("%s", line)


def apply_location(text: str, location: LocationResult, replacement: str) -> str:
    start, end = location.start_index, location.end_index
    if not 0 <= start <= end <= len(text):
        raise PatchError(f"location {start}:{end} outside text of length {len(text)}")
    new = text[:start] + replacement + text[end:]
    if len(new) != len(text) - (end - start) + len(replacement):
        raise PatchError(f"length drift splicing {start}:{end}")
    show_diff(text, new, location, replacement)
    return new


def apply_edits(text: str, edits: Iterable[Edit]) -> str:
    """Apply several edits computed on the same text, last one first."""
    ordered: List[Edit] = sorted(edits, key=lambda e: e[0].start_index, reverse=True)
    for (later, _), (earlier, _) in zip(ordered, ordered[1:]):
        if earlier.end_index > later.start_index:
            raise PatchError(
                f"overlapping edits {earlier.start_index}:{earlier.end_index} "
                f"and {later.start_index}:{later.end_index}")
    for location, replacement in ordered:
        text = apply_location(text, location, replacement)
    return text
