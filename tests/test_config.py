# tests/test_config.py
"""
Tests for AnalyzerConfig construction, validation and normalization.
"""

import logging

import pytest

from metal_analyzer.config import (
    METAL_VERSION,
    AnalyzerConfig,
    parse_macro_definitions,
    parse_path_suppression,
)
from metal_analyzer.errors import ConfigError


class TestDefaults:

    def test_defaults_are_valid(self):
        config = AnalyzerConfig()
        assert config.validate() == []
        assert config.platform == "metal"
        assert config.max_include_depth == 64
        assert config.owner_context_for_headers
        assert not config.export_included_macros

    def test_base_macros_layering(self):
        config = AnalyzerConfig(platform="metal-ios", predefined_macros={"A": "1"})
        macros = config.base_macros({"A": "2", "B": None})
        assert macros == {
            "__METAL_VERSION__": METAL_VERSION,
            "__METAL_IOS__": None,
            "A": "2",
            "B": None,
        }

    def test_host_platform_has_no_metal_macros(self):
        assert AnalyzerConfig(platform="host").base_macros() == {}

    def test_extensions(self):
        config = AnalyzerConfig()
        assert config.is_header("a/B.H")
        assert not config.is_header("k.metal")
        assert config.is_analyzable("k.metal")
        assert not config.is_analyzable("notes.txt")
        assert config.max_file_size_bytes == 512 * 1024


class TestValidation:

    def test_out_of_range_values(self):
        config = AnalyzerConfig(max_include_depth=0, scan_workers=99, max_file_size_kb=1)
        warnings = config.validate()
        assert len(warnings) == 3
        normalized = config.normalized()
        assert normalized.max_include_depth == 1
        assert normalized.scan_workers == 32
        assert normalized.max_file_size_kb == 16
        assert normalized.validate() == []

    def test_unknown_platform(self):
        config = AnalyzerConfig(platform="vulkan")
        assert any("unknown platform 'vulkan'" in w for w in config.validate())
        assert config.normalized().platform == "metal"

    def test_unknown_suppressed_code(self):
        warnings = AnalyzerConfig(suppressed_codes=("missing-include", "bogus")).validate()
        assert warnings == ["suppressed code 'bogus' is not a diagnostic code"]

    def test_suppressed_paths(self):
        config = AnalyzerConfig(suppressed_paths=(
            "generated/*", "missing-include:vendor/*", "bogus-code:x.h", "*:", "generated/*",
        ))
        assert config.validate() == [
            "suppressed path 'bogus-code:x.h' names unknown code 'bogus-code'",
            "suppressed path '*:' has no file pattern",
        ]
        assert config.normalized().suppressed_paths == (
            "generated/*", "missing-include:vendor/*", "bogus-code:x.h", "*:",
        )

    def test_search_roots(self):
        config = AnalyzerConfig(search_roots=("/abs", "../up", "inc/", "inc"))
        assert len(config.validate()) == 2
        assert config.normalized().search_roots == ("abs", "../up", "inc")

    def test_bad_macro_names_dropped(self):
        config = AnalyzerConfig(predefined_macros={"OK": None, "1BAD": "x"})
        assert len(config.validate()) == 1
        assert config.normalized().predefined_macros == {"OK": None}


class TestFromMapping:

    def test_camel_and_snake_case(self):
        config = AnalyzerConfig.from_mapping({
            "searchRoots": ["include"],
            "max_include_depth": 8,
            "ownerContextForHeaders": False,
            "platform": "metal-macos",
        })
        assert config.search_roots == ("include",)
        assert config.max_include_depth == 8
        assert not config.owner_context_for_headers
        assert config.platform == "metal-macos"

    def test_macros_as_object_or_list(self):
        as_obj = AnalyzerConfig.from_mapping({"predefinedMacros": {"A": None, "B": 2}})
        as_list = AnalyzerConfig.from_mapping({"predefinedMacros": ["A", "B=2"]})
        assert as_obj.predefined_macros == as_list.predefined_macros == {"A": None, "B": "2"}

    def test_unknown_key_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="metal_analyzer.config"):
            config = AnalyzerConfig.from_mapping({"colour": "blue"})
        assert config == AnalyzerConfig()
        assert "ignoring unknown key 'colour'" in caplog.text

    @pytest.mark.parametrize("data, key", [
        ({"maxIncludeDepth": "8"}, "max_include_depth"),
        ({"maxIncludeDepth": True}, "max_include_depth"),
        ({"strictSystemIncludes": 1}, "strict_system_includes"),
        ({"platform": 3}, "platform"),
        ({"searchRoots": "include"}, "search_roots"),
        ({"searchRoots": ["a", 1]}, "search_roots"),
        ({"predefinedMacros": "A"}, "predefined_macros"),
        ({"predefinedMacros": {"A": [1]}}, "predefined_macros"),
    ])
    def test_type_errors(self, data, key):
        with pytest.raises(ConfigError) as info:
            AnalyzerConfig.from_mapping(data)
        assert info.value.key == key

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            AnalyzerConfig.from_mapping(["searchRoots"])


class TestPathSuppression:

    @pytest.mark.parametrize("entry, expected", [
        ("missing-include:generated/*", ("missing-include", "generated/*")),
        ("*:vendor/**", ("*", "vendor/**")),
        ("generated/*.h", ("*", "generated/*.h")),
        ("Dir:With:Colons.h", ("*", "Dir:With:Colons.h")),
    ])
    def test_parse(self, entry, expected):
        assert parse_path_suppression(entry) == expected

    def test_from_mapping(self):
        config = AnalyzerConfig.from_mapping({"suppressedPaths": ["explicit-error:gen/*"]})
        assert config.suppressed_paths == ("explicit-error:gen/*",)


class TestMacroDefinitions:

    def test_parse(self):
        assert parse_macro_definitions(["A", "B=2", "C=", "D=x=y"]) == {
            "A": None, "B": "2", "C": "", "D": "x=y",
        }

    def test_empty_entry(self):
        with pytest.raises(ConfigError):
            parse_macro_definitions([""], "-D")
