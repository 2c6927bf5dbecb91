#!/usr/bin/env python3
"""
Tests for executable detection: search path first, then direct install paths
"""

import os

from bio_test_suite.models import DetectionSource
from bio_test_suite.probe import ProbeEngine
from bio_test_suite.process import ProcessResult, SearchContext
from conftest import FakeInvoker, make_spec

SYSTEM_PATH = ("/usr/bin", "/bin")


def context_for(*directories) -> SearchContext:
    return SearchContext(path_entries=tuple(str(d) for d in directories) + SYSTEM_PATH)


def test_second_candidate_command_found_on_search_path(tmp_path, make_executable):
    """Only iqtree2 installed: detected through the search path"""
    bin_dir = tmp_path / "bin"
    make_executable("iqtree2", 'echo "IQ-TREE multicore version 2.3.5"')
    spec = make_spec("iqtree", commands=["iqtree", "iqtree2"])

    result = ProbeEngine(context_for(bin_dir)).probe(spec)

    assert result.found
    assert result.detection_source == DetectionSource.SEARCH_PATH
    assert result.resolved_location == str(bin_dir / "iqtree2")
    assert result.version_string == "IQ-TREE multicore version 2.3.5"


def test_first_matching_command_wins(tmp_path, make_executable):
    bin_dir = tmp_path / "bin"
    make_executable("iqtree", "echo first")
    make_executable("iqtree2", "echo second")
    spec = make_spec("iqtree", commands=["iqtree", "iqtree2"])

    result = ProbeEngine(context_for(bin_dir)).probe(spec)

    assert result.resolved_location == str(bin_dir / "iqtree")
    assert result.version_string == "first"


def test_direct_path_used_when_not_on_search_path(tmp_path, make_executable):
    install = make_executable("iqtree2.3.5", "echo direct", directory=tmp_path / "opt" / "apps")
    spec = make_spec("iqtree", commands=["iqtree", "iqtree2"], paths=[str(tmp_path / "nowhere"), str(install)])

    result = ProbeEngine(context_for(tmp_path / "empty")).probe(spec)

    assert result.found
    assert result.detection_source == DetectionSource.DIRECT_PATH
    assert result.resolved_location == str(install)


def test_non_executable_direct_path_is_not_detected(tmp_path, make_executable):
    install = make_executable("treemix", "echo hi", directory=tmp_path / "opt", executable=False)
    spec = make_spec("treemix", commands=[], paths=[str(install)])

    result = ProbeEngine(context_for(tmp_path / "empty")).probe(spec)

    assert not result.found


def test_directory_is_not_an_executable(tmp_path):
    (tmp_path / "opt" / "iqtree").mkdir(parents=True)
    spec = make_spec("iqtree", commands=[], paths=[str(tmp_path / "opt" / "iqtree")])

    result = ProbeEngine(context_for(tmp_path / "empty")).probe(spec)

    assert not result.found


def test_not_found_anywhere(tmp_path):
    spec = make_spec("kraken2", paths=[str(tmp_path / "kraken2")])
    invoker = FakeInvoker()

    result = ProbeEngine(context_for(tmp_path / "empty"), invoker=invoker).probe(spec)

    assert not result.found
    assert result.detection_source == DetectionSource.NONE
    assert result.resolved_location is None
    assert result.version_string is None
    assert invoker.calls == []


def test_version_timeout_does_not_change_detection(tmp_path, make_executable):
    bin_dir = tmp_path / "bin"
    make_executable("slowtool", "exec sleep 5")
    spec = make_spec("slowtool")

    result = ProbeEngine(context_for(bin_dir), version_timeout=0.5).probe(spec)

    assert result.found
    assert result.version_string is None


def test_version_from_stderr_and_nonzero_exit(tmp_path, make_executable):
    """Tools that print their banner on stderr and exit 1 are still detected"""
    bin_dir = tmp_path / "bin"
    make_executable("beast", 'echo "BEAST v2.7.5" >&2\nexit 1')
    spec = make_spec("beast", version_args=("-version",))

    result = ProbeEngine(context_for(bin_dir)).probe(spec)

    assert result.found
    assert result.version_string == "BEAST v2.7.5"


def test_version_args_are_passed(tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    tool = bin_dir / "beast"
    tool.write_text("#!/bin/sh\n")
    tool.chmod(0o755)
    invoker = FakeInvoker({"beast -version": ProcessResult(returncode=0, stdout="\nBEAST v2.7.5\n")})
    spec = make_spec("beast", version_args=("-version",))

    result = ProbeEngine(context_for(bin_dir), invoker=invoker).probe(spec)

    assert invoker.calls == [[str(tool), "-version"]]
    assert result.version_string == "BEAST v2.7.5"


def test_probe_never_raises(tmp_path, make_executable):
    class ExplodingInvoker:
        def run(self, *args, **kwargs):
            raise RuntimeError("boom")

    bin_dir = tmp_path / "bin"
    make_executable("plink")

    result = ProbeEngine(context_for(bin_dir), invoker=ExplodingInvoker()).probe(make_spec("plink"))

    assert result.found
    assert result.version_string is None


def test_probe_all_keeps_order(tmp_path, make_executable):
    bin_dir = tmp_path / "bin"
    make_executable("vcftools")
    specs = [make_spec("plink"), make_spec("vcftools")]

    results = ProbeEngine(context_for(bin_dir), invoker=FakeInvoker()).probe_all(specs)

    assert list(results) == ["plink", "vcftools"]
    assert not results["plink"].found
    assert results["vcftools"].found


def test_search_context_prefixes_and_environment(tmp_path, monkeypatch):
    apps = tmp_path / "apps"
    apps.mkdir()
    monkeypatch.setenv("PATH", "/usr/bin")
    before = dict(os.environ)

    context = SearchContext.from_environment([str(apps), str(tmp_path / "missing")])

    assert context.path_entries == (str(apps), "/usr/bin")
    assert context.environ()["PATH"] == os.pathsep.join([str(apps), "/usr/bin"])
    assert dict(os.environ) == before


def test_empty_search_path_resolves_nothing():
    assert SearchContext(path_entries=()).which("sh") is None
