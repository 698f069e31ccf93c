import copy

import pytest

from conftest import DISCOURSE, make_record
from methodrag.input_layer.methodology_validator import validate_methodology
from methodrag.utils.error_handler import FormatError, InvalidRecordError

def test_valid_record_builds_methodology(record):
    methodology = validate_methodology(record)
    assert methodology.id == "gt-charmaz"
    assert methodology.author_name == "Kathy Charmaz"
    assert [stage.order for stage in methodology.stages] == [1, 2]
    assert methodology.stages[0].prompt_template.startswith("Code each line")
    assert methodology.metadata.citations == 120
    assert methodology.data_types() == ["interview"]
    assert methodology.minimum_sample_size() == 10

def test_guidance_and_contact_alternatives_accepted():
    methodology = validate_methodology(make_record(DISCOURSE))
    assert methodology.stages[0].prompt_template == "List the lexical and grammatical features."

def test_validation_does_not_mutate_candidate(record):
    before = copy.deepcopy(record)
    methodology = validate_methodology(record)
    methodology.raw["name"] = "changed"
    assert record == before

def test_unknown_keys_preserved(record):
    record["x-translations"] = {"de": "Grounded Theory"}
    assert validate_methodology(record).to_dict()["x-translations"] == {"de": "Grounded Theory"}

@pytest.mark.parametrize("missing", ["id", "name", "version", "author", "category", "description", "stages"])
def test_missing_required_field(record, missing):
    del record[missing]
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(record)
    assert exc_info.value.rule == "required-fields"
    assert missing in str(exc_info.value)

def test_blank_string_counts_as_missing(record):
    record["name"] = "   "
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(record)
    assert exc_info.value.rule == "required-fields"

def test_non_mapping_candidate():
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(["not", "a", "record"])
    assert exc_info.value.rule == "required-fields"

def test_empty_stages(record):
    record["stages"] = []
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(record)
    assert exc_info.value.rule == "stages"

def test_stage_missing_description(record):
    del record["stages"][1]["description"]
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(record)
    assert exc_info.value.rule == "stage-fields"
    assert str(exc_info.value) == "Each stage must have name, description, and guidance"

def test_stage_missing_guidance(record):
    del record["stages"][0]["promptTemplate"]
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(record)
    assert exc_info.value.rule == "stage-fields"

def test_author_missing_contact(record):
    record["author"] = {"name": "Kathy Charmaz"}
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(record)
    assert exc_info.value.rule == "author"
    assert str(exc_info.value) == "Author must have name and email"

def test_two_part_version(record):
    record["version"] = "1.0"
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(record)
    assert exc_info.value.rule == "version"
    assert isinstance(exc_info.value.__cause__, FormatError)

def test_rules_run_in_order(record):
    # both the stage and the version are broken; the stage rule comes first
    record["version"] = "1.0"
    record["stages"][0]["name"] = ""
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(record)
    assert exc_info.value.rule == "stage-fields"

def test_unknown_category(record):
    record["category"] = "astrology"
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(record)
    assert exc_info.value.rule == "category"

def test_unsafe_id(record):
    record["id"] = "../etc/passwd"
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(record)
    assert exc_info.value.rule == "id"

@pytest.mark.parametrize("field, value", [
    ("examples", ["interview transcripts"]),
    ("metadata", ["x"]),
    ("metadata", {"tags": "interview"}),
    ("metadata", {"tags": ["interview", 3]}),
    ("tools", ["memos"]),
    ("reviewers", "reviewer-1"),
])
def test_malformed_optional_fields_rejected(record, field, value):
    record[field] = value
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(record)
    assert exc_info.value.rule == "structure"

@pytest.mark.parametrize("stage_field, value", [
    ("minimumSampleSize", "ten"),
    ("minimumSampleSize", True),
    ("requires", "Initial coding"),
    ("outputs", [["focused codes"]]),
])
def test_malformed_stage_fields_rejected(record, stage_field, value):
    record["stages"][1][stage_field] = value
    with pytest.raises(InvalidRecordError) as exc_info:
        validate_methodology(record)
    assert exc_info.value.rule == "structure"

def test_whole_number_sample_size_is_coerced(record):
    record["stages"][0]["minimumSampleSize"] = 12.0
    methodology = validate_methodology(record)
    assert methodology.minimum_sample_size() == 12
    assert methodology.to_dict()["stages"][0]["minimumSampleSize"] == 12.0
