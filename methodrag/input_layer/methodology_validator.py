import re
from typing import Any, Dict

from methodrag.input_layer.version import parse_version
from methodrag.models import METHODOLOGY_CATEGORIES, Methodology
from methodrag.utils.error_handler import FormatError, InvalidRecordError

REQUIRED_FIELDS = ("id", "name", "version", "author", "category", "description", "stages")
STAGE_GUIDANCE_FIELDS = ("promptTemplate", "guidance")
AUTHOR_CONTACT_FIELDS = ("email", "contact")
ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    # empty stages or author are reported by their own rules
    return False

def validate_methodology(candidate: Any) -> Methodology:
    """
    Check an untrusted candidate document and build a Methodology from it.

    Rules run in a fixed order and the first failure is reported. The
    candidate itself is never modified.

    Args:
        candidate: Parsed JSON/YAML content from the remote repository

    Returns:
        The validated Methodology

    Raises:
        InvalidRecordError: Naming the first failing rule
    """
    if not isinstance(candidate, dict):
        raise InvalidRecordError(
            "required-fields",
            f"Methodology must be an object, got {type(candidate).__name__}"
        )

    for field_name in REQUIRED_FIELDS:
        if _is_blank(candidate.get(field_name)):
            raise InvalidRecordError(
                "required-fields",
                f"Missing required field: {field_name}",
                {"field": field_name}
            )

    stages = candidate["stages"]
    if not isinstance(stages, list) or not stages:
        raise InvalidRecordError("stages", "Methodology must have at least one stage")

    for position, stage in enumerate(stages):
        if not isinstance(stage, dict):
            raise InvalidRecordError(
                "stage-fields",
                f"Stage {position + 1} must be an object",
                {"stage": position}
            )
        has_guidance = any(not _is_blank(stage.get(key)) for key in STAGE_GUIDANCE_FIELDS)
        if _is_blank(stage.get("name")) or _is_blank(stage.get("description")) or not has_guidance:
            raise InvalidRecordError(
                "stage-fields",
                "Each stage must have name, description, and guidance",
                {"stage": stage.get("name") or position}
            )

    author = candidate["author"]
    has_contact = isinstance(author, dict) and any(
        not _is_blank(author.get(key)) for key in AUTHOR_CONTACT_FIELDS
    )
    if not isinstance(author, dict) or _is_blank(author.get("name")) or not has_contact:
        raise InvalidRecordError("author", "Author must have name and email")

    try:
        parse_version(candidate["version"])
    except FormatError as e:
        raise InvalidRecordError("version", str(e), e.details) from e

    if candidate["category"] not in METHODOLOGY_CATEGORIES:
        raise InvalidRecordError(
            "category",
            f"Unknown category: {candidate['category']}",
            {"allowed": list(METHODOLOGY_CATEGORIES)}
        )

    if not isinstance(candidate["id"], str) or not ID_PATTERN.match(candidate["id"]):
        raise InvalidRecordError(
            "id",
            f"Methodology id is not a usable key: {candidate['id']!r}"
        )

    try:
        return Methodology.from_dict(candidate)
    except (TypeError, ValueError, KeyError, AttributeError) as e:
        raise InvalidRecordError("structure", f"Malformed methodology: {str(e)}") from e
