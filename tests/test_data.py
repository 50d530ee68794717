"""
Tests for loading, combining and reshaping expression data.
"""

import numpy as np
import pandas as pd
import pytest
from summarizedexperiment import SummarizedExperiment

from moderated_de.data import (
    DEFAULT_FACTOR_LEVELS,
    apply_factor_levels,
    build_experiment,
    expression_frame,
    load_design,
    load_experiment,
    load_expression,
    prepare_data,
    sample_frame,
    subset_genes,
    subset_samples,
)


@pytest.fixture
def written_files(tmp_path, photorec_exprs, photorec_design):
    expr_path = tmp_path / "GSE4051_data.tsv"
    design_path = tmp_path / "GSE4051_design.tsv"
    photorec_exprs.to_csv(expr_path, sep="\t")
    design = photorec_design.copy()
    design["devStage"] = design["devStage"].astype(str)
    design["gType"] = design["gType"].astype(str)
    design.to_csv(design_path, sep="\t", index=False)
    return expr_path, design_path


class TestLoading:
    def test_load_expression(self, written_files, photorec_exprs):
        expr_path, _ = written_files
        exprs = load_expression(expr_path)
        assert exprs.shape == photorec_exprs.shape
        assert list(exprs.index[:2]) == ["1415670_at", "1415671_at"]
        np.testing.assert_allclose(exprs.to_numpy(), photorec_exprs.to_numpy())

    def test_load_expression_rejects_text_columns(self, tmp_path):
        path = tmp_path / "bad.tsv"
        pd.DataFrame({"s1": [1.0, 2.0], "s2": ["a", "b"]}, index=["g1", "g2"]).to_csv(path, sep="\t")
        with pytest.raises(TypeError, match="not numeric"):
            load_expression(path)

    def test_load_design_orders_factors(self, written_files):
        _, design_path = written_files
        design = load_design(design_path)
        assert list(design["devStage"].cat.categories) == DEFAULT_FACTOR_LEVELS["devStage"]
        assert list(design["gType"].cat.categories) == ["wt", "NrlKO"]
        assert design["devStage"].cat.ordered

    def test_load_design_unsupported_suffix(self, tmp_path):
        path = tmp_path / "design.xlsx"
        path.write_text("")
        with pytest.raises(ValueError, match="Unsupported design file type"):
            load_design(path)

    def test_apply_factor_levels_unknown_value(self):
        frame = pd.DataFrame({"gType": ["wt", "mutant"]})
        with pytest.raises(ValueError, match="outside its levels"):
            apply_factor_levels(frame, {"gType": ["wt", "NrlKO"]})

    def test_apply_factor_levels_skips_absent_columns(self):
        frame = pd.DataFrame({"gType": ["wt", "NrlKO"]})
        out = apply_factor_levels(frame, DEFAULT_FACTOR_LEVELS)
        assert "devStage" not in out.columns
        assert list(out["gType"].cat.categories) == ["wt", "NrlKO"]

    def test_load_experiment(self, written_files):
        se = load_experiment(*written_files)
        assert isinstance(se, SummarizedExperiment)
        assert se.shape == (200, 40)
        assert "exprs" in se.assay_names


class TestBuildExperiment:
    def test_design_reordered_to_expression(self, photorec_se, photorec_exprs):
        assert list(photorec_se.column_names) == list(photorec_exprs.columns)
        meta = sample_frame(photorec_se)
        assert list(meta["sidChar"]) == list(photorec_exprs.columns)

    def test_records_factor_levels(self, photorec_se):
        levels = photorec_se.metadata["factor_levels"]
        assert levels["devStage"] == ["E16", "P2", "P6", "P10", "4_weeks"]
        assert levels["gType"] == ["wt", "NrlKO"]

    def test_sample_frame_restores_categoricals(self, photorec_se):
        meta = sample_frame(photorec_se)
        assert isinstance(meta["devStage"].dtype, pd.CategoricalDtype)
        assert list(meta["devStage"].cat.categories)[0] == "E16"

    def test_missing_sample_column(self, photorec_exprs, photorec_design):
        with pytest.raises(KeyError, match="Sample column"):
            build_experiment(photorec_exprs, photorec_design, sample_col="sample_id")

    def test_sample_mismatch(self, photorec_exprs, photorec_design):
        with pytest.raises(ValueError, match="Samples do not match"):
            build_experiment(photorec_exprs.iloc[:, :-1], photorec_design)

    def test_duplicated_ids(self, photorec_exprs, photorec_design):
        design = photorec_design.copy()
        design.loc[1, "sidChar"] = design.loc[0, "sidChar"]
        with pytest.raises(ValueError, match="Duplicated sample ids"):
            build_experiment(photorec_exprs, design)

    def test_expression_frame_round_trip(self, photorec_se, photorec_exprs):
        frame = expression_frame(photorec_se)
        pd.testing.assert_frame_equal(frame, photorec_exprs, check_names=False)

    def test_expression_frame_unknown_assay(self, photorec_se):
        with pytest.raises(KeyError, match="Assay 'counts' not found"):
            expression_frame(photorec_se, assay="counts")


class TestSubsetting:
    def test_subset_by_scalar(self, photorec_se):
        wt = subset_samples(photorec_se, gType="wt")
        assert wt.shape == (200, 20)
        meta = sample_frame(wt)
        assert set(meta["gType"]) == {"wt"}
        assert list(meta["gType"].cat.categories) == ["wt"]
        assert list(meta["devStage"].cat.categories) == DEFAULT_FACTOR_LEVELS["devStage"]

    def test_subset_by_collection_drops_levels(self, photorec_se):
        late = subset_samples(photorec_se, devStage=["P10", "4_weeks"])
        assert late.shape[1] == 16
        assert list(sample_frame(late)["devStage"].cat.categories) == ["P10", "4_weeks"]

    def test_subset_by_callable(self, photorec_se):
        first = subset_samples(photorec_se, sidNum=lambda v: v <= 5)
        assert sorted(sample_frame(first)["sidNum"]) == [1, 2, 3, 4, 5]

    def test_subset_combines_criteria(self, photorec_se):
        sub = subset_samples(photorec_se, gType="NrlKO", devStage="E16")
        assert sub.shape[1] == 4

    def test_subset_unknown_column(self, photorec_se):
        with pytest.raises(KeyError, match="Column 'batch' not found"):
            subset_samples(photorec_se, batch=1)

    def test_subset_no_match(self, photorec_se):
        with pytest.raises(ValueError, match="No samples match"):
            subset_samples(photorec_se, gType="mutant")

    def test_subset_genes_keeps_order(self, photorec_se):
        sub = subset_genes(photorec_se, ["1415680_at", "1415670_at"])
        assert list(sub.row_names) == ["1415680_at", "1415670_at"]

    def test_subset_genes_missing(self, photorec_se):
        with pytest.raises(KeyError, match="Genes not found"):
            subset_genes(photorec_se, ["nope_at"])


class TestPrepareData:
    def test_long_format(self, photorec_se, photorec_exprs):
        genes = ["1415675_at", "1415670_at"]
        long = prepare_data(photorec_se, genes)
        assert len(long) == 2 * 40
        assert {"sample", "gExp", "gene", "devStage", "gType"} <= set(long.columns)
        assert list(long["gene"].cat.categories) == genes
        row = long[(long["gene"] == "1415670_at") & (long["sample"] == "Sample_3")].iloc[0]
        assert row["gExp"] == pytest.approx(photorec_exprs.loc["1415670_at", "Sample_3"])

    def test_group_means(self, photorec_se, photorec_exprs, photorec_design):
        long = prepare_data(photorec_se, ["1415670_at"])
        means = long.groupby("devStage", observed=True)["gExp"].mean()
        ids = photorec_design.loc[photorec_design["devStage"] == "P6", "sidChar"]
        assert means["P6"] == pytest.approx(photorec_exprs.loc["1415670_at", ids].mean())

    def test_duplicates_collapsed(self, photorec_se):
        long = prepare_data(photorec_se, ["1415670_at", "1415670_at"])
        assert len(long) == 40

    def test_no_genes(self, photorec_se):
        with pytest.raises(ValueError, match="No genes given"):
            prepare_data(photorec_se, [])
