import re
from typing import Tuple

from methodrag.utils.error_handler import FormatError

VERSION_PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")

def parse_version(version: str) -> Tuple[int, int, int]:
    """
    Split a MAJOR.MINOR.PATCH string into integers.

    Raises:
        FormatError: If the string is not exactly three dot-separated numbers
    """
    if not isinstance(version, str):
        raise FormatError(f"Version must be a string, got {type(version).__name__}",
                          {"version": version})
    match = VERSION_PATTERN.match(version)
    if match is None:
        raise FormatError(f"Version must follow MAJOR.MINOR.PATCH (e.g. 1.0.0), got '{version}'",
                          {"version": version})
    return int(match.group(1)), int(match.group(2)), int(match.group(3))

def compare_versions(left: str, right: str) -> int:
    """
    Compare two versions component by component.

    Returns:
        1 if left is newer, -1 if right is newer, 0 if they are equal
    """
    left_parts = parse_version(left)
    right_parts = parse_version(right)
    for a, b in zip(left_parts, right_parts):
        if a > b:
            return 1
        if a < b:
            return -1
    return 0
