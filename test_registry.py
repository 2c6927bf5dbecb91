#!/usr/bin/env python3
"""
Tests for the application registry and its YAML loader
"""

import pytest

from bio_test_suite.detailed import ScriptDetailedTest
from bio_test_suite.errors import ConfigurationError, DuplicateKeyError
from bio_test_suite.models import ApplicationSpec
from bio_test_suite.registry import ApplicationRegistry, load_registry, spec_from_dict
from conftest import make_spec


def test_builtin_registry_lists_known_applications():
    """The shipped apps.yaml loads in a stable order"""
    registry = load_registry()
    keys = [spec.key for spec in registry.all()]

    assert keys == ["iqtree", "beast", "treemix", "plink", "kraken2", "vcftools", "qiime", "R", "alphafold3"]
    assert registry.get("iqtree").candidate_commands == ("iqtree", "iqtree2")
    assert registry.get("beast").version_args == ("-version",)
    assert registry.get("R").smoke_check.expect == "R is working"
    assert registry.get("alphafold3").resources["partition"] == "gpunodes"


def test_register_rejects_duplicate_key():
    registry = ApplicationRegistry([make_spec("plink")])

    with pytest.raises(DuplicateKeyError) as excinfo:
        registry.register(make_spec("plink", display_name="PLINK again"))
    assert excinfo.value.key == "plink"
    assert len(registry) == 1


def test_register_requires_commands_or_paths():
    spec = ApplicationSpec(key="ghost", display_name="Ghost", category="genomics")

    with pytest.raises(ConfigurationError):
        ApplicationRegistry([spec])


def test_all_is_restartable_and_ordered():
    registry = ApplicationRegistry([make_spec("b"), make_spec("a"), make_spec("c")])

    first = [spec.key for spec in registry.all()]
    second = [spec.key for spec in registry]
    assert first == second == ["b", "a", "c"]


def test_by_category_keeps_registration_order():
    registry = ApplicationRegistry([
        make_spec("iqtree", category="phylogenetics"),
        make_spec("plink", category="population_genetics"),
        make_spec("beast", category="phylogenetics"),
    ])

    selected = registry.by_category(["phylogenetics"])
    assert [spec.key for spec in selected] == ["iqtree", "beast"]
    assert registry.categories() == ["phylogenetics", "population_genetics"]


def test_select_unknown_key_is_configuration_error():
    registry = ApplicationRegistry([make_spec("plink")])

    with pytest.raises(ConfigurationError, match="Unknown application 'nope'"):
        registry.select(["plink", "nope"])


def test_select_deduplicates_in_given_order():
    registry = ApplicationRegistry([make_spec("a"), make_spec("b")])

    assert [spec.key for spec in registry.select(["b", "a", "b"])] == ["b", "a"]


def test_test_script_discovered_by_naming_convention(tmp_path):
    """<key>_test.sh in the scripts directory becomes the detailed test"""
    script = tmp_path / "iqtree_test.sh"
    script.write_text("#!/bin/bash\necho ok\n")

    spec = spec_from_dict({"key": "iqtree", "commands": ["iqtree"]}, scripts_dir=tmp_path)

    assert isinstance(spec.detailed_test, ScriptDetailedTest)
    assert spec.detailed_test.script == script
    assert spec.detailed_test.name == "iqtree_test.sh"


def test_missing_test_script_means_basic_only(tmp_path):
    entry = {"key": "qiime", "commands": ["qiime"], "detailed_test": {"script": "qiime2_test.sh"}}

    spec = spec_from_dict(entry, scripts_dir=tmp_path)

    assert spec.detailed_test is None


def test_accepts_mode_is_read_from_entry(tmp_path):
    (tmp_path / "af3.sh").write_text("#!/bin/bash\n")
    entry = {
        "key": "alphafold3",
        "commands": ["run_alphafold.py"],
        "detailed_test": {"script": "af3.sh", "accepts_mode": True},
    }

    spec = spec_from_dict(entry, scripts_dir=tmp_path)

    assert spec.detailed_test.command("compute")[-2:] == ["--mode", "compute"]


def test_smoke_check_requires_expect():
    with pytest.raises(ConfigurationError):
        spec_from_dict({"key": "R", "commands": ["R"], "smoke_check": {"args": ["--vanilla"]}})


def test_entry_without_key_is_rejected():
    with pytest.raises(ConfigurationError):
        spec_from_dict({"name": "Nameless", "commands": ["x"]})


def test_load_registry_rejects_invalid_yaml(tmp_path):
    bad = tmp_path / "apps.yaml"
    bad.write_text("applications: [unclosed\n")

    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        load_registry(bad)


def test_load_registry_requires_applications_list(tmp_path):
    empty = tmp_path / "apps.yaml"
    empty.write_text("something_else: 1\n")

    with pytest.raises(ConfigurationError, match="no 'applications' list"):
        load_registry(empty)


def test_load_registry_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="Cannot read registry file"):
        load_registry(tmp_path / "missing.yaml")


def test_load_registry_duplicate_keys(tmp_path):
    path = tmp_path / "apps.yaml"
    path.write_text(
        "applications:\n"
        "  - {key: plink, commands: [plink]}\n"
        "  - {key: plink, commands: [plink2]}\n"
    )

    with pytest.raises(DuplicateKeyError):
        load_registry(path)


def test_test_scripts_default_to_working_directory(tmp_path, monkeypatch):
    """Without a scripts directory, <key>_test.sh and named scripts resolve against the cwd"""
    (tmp_path / "iqtree_test.sh").write_text("#!/bin/bash\necho ok\n")
    (tmp_path / "alphafold3_test.sh").write_text("#!/bin/bash\necho ok\n")
    monkeypatch.chdir(tmp_path)

    registry = load_registry()

    assert registry.get("iqtree").detailed_test.script.samefile(tmp_path / "iqtree_test.sh")
    assert registry.get("alphafold3").detailed_test.script.samefile(tmp_path / "alphafold3_test.sh")
    assert registry.get("alphafold3").detailed_test.accepts_mode
    assert registry.get("plink").detailed_test is None


@pytest.mark.parametrize("field, value", [
    ("commands", "iqtree"),
    ("paths", "/opt/sw/pub/apps/iqtree/bin/iqtree"),
    ("version_args", "--version"),
    ("commands", [{"name": "iqtree"}]),
])
def test_scalar_where_list_expected_is_rejected(field, value):
    entry = {"key": "iqtree", "commands": ["iqtree"], field: value}

    with pytest.raises(ConfigurationError, match=field):
        spec_from_dict(entry)


@pytest.mark.parametrize("smoke_check", [True, "R is working", ["--vanilla"]])
def test_smoke_check_must_be_a_mapping(smoke_check):
    with pytest.raises(ConfigurationError, match="smoke_check"):
        spec_from_dict({"key": "R", "commands": ["R"], "smoke_check": smoke_check})


def test_smoke_check_args_must_be_a_list():
    entry = {"key": "R", "commands": ["R"], "smoke_check": {"args": "--vanilla", "expect": "ok"}}

    with pytest.raises(ConfigurationError, match="smoke_check.args"):
        spec_from_dict(entry)


@pytest.mark.parametrize("detailed_test", [5, ["qiime2_test.sh"], {"accepts_mode": True}])
def test_malformed_detailed_test_is_rejected(detailed_test, tmp_path):
    entry = {"key": "qiime", "commands": ["qiime"], "detailed_test": detailed_test}

    with pytest.raises(ConfigurationError, match="detailed_test"):
        spec_from_dict(entry, scripts_dir=tmp_path)


def test_malformed_entry_in_yaml_file_is_configuration_error(tmp_path):
    path = tmp_path / "apps.yaml"
    path.write_text(
        "applications:\n"
        "  - key: R\n"
        "    commands: [R]\n"
        "    smoke_check: yes\n"
    )

    with pytest.raises(ConfigurationError, match="smoke_check"):
        load_registry(path, scripts_dir=tmp_path)
