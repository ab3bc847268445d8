"""
Percentage to letter grade to grade point conversion.

This is the only cutoff table in the codebase. Grades and submissions both
derive their letter grade from here.
"""
import math
from typing import Dict, List, Tuple

# (minimum percentage, letter, grade points), highest band first
GRADE_SCALE: List[Tuple[float, str, float]] = [
    (97, "A+", 4.0),
    (93, "A", 4.0),
    (90, "A-", 3.7),
    (87, "B+", 3.3),
    (83, "B", 3.0),
    (80, "B-", 2.7),
    (77, "C+", 2.3),
    (73, "C", 2.0),
    (70, "C-", 1.7),
    (67, "D+", 1.3),
    (63, "D", 1.0),
    (60, "D-", 0.7),
    (0, "F", 0.0),
]

LETTER_GRADES: List[str] = [letter for _, letter, _ in GRADE_SCALE]

_GRADE_POINTS: Dict[str, float] = {letter: points for _, letter, points in GRADE_SCALE}

DISTRIBUTION_BANDS = ["A", "B", "C", "D", "F"]


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Arithmetic rounding (2.5 -> 3), unlike the built-in round()"""
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def letter_grade_of(percentage: float) -> str:
    for cutoff, letter, _ in GRADE_SCALE:
        if percentage >= cutoff:
            return letter
    return "F"


def grade_points_of(letter: str) -> float:
    """4.0 scale points for a letter grade. Unknown letters score 0.0"""
    return _GRADE_POINTS.get(letter, 0.0)


def percentage_of(earned: float, possible: float) -> int:
    if not possible or possible <= 0:
        return 0
    return int(round_half_up(earned / possible * 100))


def is_valid_letter(letter: str) -> bool:
    return letter in _GRADE_POINTS


def band_of(letter: str) -> str:
    """Collapse A+/A/A- style letters into the A-F distribution bands"""
    if not letter or letter[0] not in DISTRIBUTION_BANDS:
        return "F"
    return letter[0]
