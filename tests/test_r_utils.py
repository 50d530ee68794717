"""Tests for the R bridge helpers that do not need a working R installation."""

import pytest

from moderated_de import r_utils
from moderated_de.data import load_design
from moderated_de.r_utils import ensure_r_dependencies, is_r_available, is_r_package_installed, read_rds


def test_is_r_available_returns_bool():
    assert isinstance(is_r_available(), bool)


def test_package_check_false_without_r():
    if is_r_available():
        pytest.skip("R is available")
    assert is_r_package_installed("limma") is False


def test_already_checked_packages_skip_r(monkeypatch):
    monkeypatch.setattr(r_utils, "_checked_packages", {"limma"})
    ensure_r_dependencies(["limma"])


def test_read_rds_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_rds(tmp_path / "GSE4051_design.rds")


def test_load_design_rds_goes_through_r(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_design(tmp_path / "missing.rds")


@pytest.mark.skipif(not is_r_package_installed("limma"), reason="R limma not installed")
def test_read_rds_factors(tmp_path):
    import rpy2.robjects as ro

    path = tmp_path / "design.rds"
    ro.r(
        "function(p) saveRDS(data.frame(sidChar = c('a', 'b'), "
        "gType = factor(c('NrlKO', 'wt'), levels = c('wt', 'NrlKO'))), p)"
    )(str(path))
    frame = read_rds(path)
    assert list(frame["gType"].cat.categories) == ["wt", "NrlKO"]
    design = load_design(path)
    assert list(design["gType"]) == ["NrlKO", "wt"]
