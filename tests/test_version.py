import itertools

import pytest

from methodrag.input_layer.version import compare_versions, parse_version
from methodrag.utils.error_handler import FormatError

VERSIONS = ["0.0.0", "0.0.9", "0.1.0", "0.10.0", "1.0.0", "1.0.10", "1.2.3", "2.0.0", "10.0.0"]

def test_parse_version():
    assert parse_version("1.2.3") == (1, 2, 3)
    assert parse_version("10.0.42") == (10, 0, 42)

@pytest.mark.parametrize("bad", ["1.0", "1.0.0.0", "v1.0.0", "1.a.0", "", " 1.0.0", "1.0.0-beta"])
def test_parse_version_rejects_malformed(bad):
    with pytest.raises(FormatError):
        parse_version(bad)

def test_parse_version_rejects_non_string():
    with pytest.raises(FormatError):
        parse_version(1.0)

def test_components_compare_numerically():
    assert compare_versions("1.10.0", "1.9.0") == 1
    assert compare_versions("1.0.2", "1.0.10") == -1
    assert compare_versions("2.0.0", "1.99.99") == 1
    assert compare_versions("3.1.4", "3.1.4") == 0

def test_order_is_antisymmetric():
    for a, b in itertools.product(VERSIONS, repeat=2):
        assert compare_versions(a, b) == -compare_versions(b, a)

def test_order_is_transitive():
    for a, b, c in itertools.product(VERSIONS, repeat=3):
        if compare_versions(a, b) > 0 and compare_versions(b, c) > 0:
            assert compare_versions(a, c) > 0

def test_listed_versions_are_ascending():
    for lower, higher in zip(VERSIONS, VERSIONS[1:]):
        assert compare_versions(lower, higher) == -1
