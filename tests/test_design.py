"""Tests for formulas and design matrices."""

import numpy as np
import pandas as pd
import pytest

from moderated_de.design import INTERCEPT, formula_variables, model_matrix, r_column_name, relevel


@pytest.fixture
def samples():
    return pd.DataFrame(
        {
            "devStage": pd.Categorical(
                ["E16", "E16", "P2", "P2", "4_weeks", "4_weeks"],
                categories=["E16", "P2", "4_weeks"],
                ordered=True,
            ),
            "gType": ["wt", "NrlKO", "wt", "NrlKO", "wt", "NrlKO"],
            "age": [0.0, 0.0, 2.0, 2.0, 28.0, 28.0],
        },
        index=[f"s{i}" for i in range(6)],
    )


class TestFormula:
    def test_r_column_names(self):
        assert r_column_name("Intercept") == INTERCEPT
        assert r_column_name("devStage[T.P2]") == "devStageP2"
        assert r_column_name("devStage[E16]") == "devStageE16"
        assert r_column_name("gType[T.NrlKO]:devStage[T.4_weeks]") == "gTypeNrlKO:devStage4_weeks"
        assert r_column_name("age") == "age"

    def test_formula_variables(self):
        assert formula_variables("~ gType * devStage") == ["gType", "devStage"]
        assert formula_variables("~ 0 + devStage") == ["devStage"]

    def test_empty(self, samples):
        with pytest.raises(ValueError, match="Empty formula"):
            model_matrix(samples, "~ ")


class TestModelMatrix:
    def test_treatment_contrasts(self, samples):
        design = model_matrix(samples, "~ devStage")
        assert list(design.columns) == [INTERCEPT, "devStageP2", "devStage4_weeks"]
        np.testing.assert_array_equal(design["devStageP2"], [0, 0, 1, 1, 0, 0])
        assert list(design.index) == list(samples.index)

    def test_cell_means(self, samples):
        design = model_matrix(samples, "~ 0 + devStage")
        assert list(design.columns) == ["devStageE16", "devStageP2", "devStage4_weeks"]
        np.testing.assert_array_equal(design.sum(axis=1), np.ones(6))

    def test_string_factor_sorted_levels(self, samples):
        design = model_matrix(samples, "~ gType")
        # NrlKO sorts before wt, so it is the reference level
        assert list(design.columns) == [INTERCEPT, "gTypewt"]

    def test_relevel_changes_reference(self, samples):
        design = model_matrix(relevel(samples, "gType", "wt"), "~ gType")
        assert list(design.columns) == [INTERCEPT, "gTypeNrlKO"]
        np.testing.assert_array_equal(design["gTypeNrlKO"], [0, 1, 0, 1, 0, 1])

    def test_numeric_covariate(self, samples):
        design = model_matrix(samples, "~ age")
        assert list(design.columns) == [INTERCEPT, "age"]
        np.testing.assert_array_equal(design["age"], samples["age"])

    def test_interaction_columns(self, samples):
        frame = relevel(samples, "gType", "wt")
        design = model_matrix(frame, "~ gType * devStage")
        assert list(design.columns) == [
            INTERCEPT,
            "gTypeNrlKO",
            "devStageP2",
            "devStage4_weeks",
            "gTypeNrlKO:devStageP2",
            "gTypeNrlKO:devStage4_weeks",
        ]
        np.testing.assert_array_equal(design["gTypeNrlKO:devStageP2"], [0, 0, 0, 1, 0, 0])

    def test_interaction_without_main_effects_is_full_rank(self, samples):
        design = model_matrix(samples, "~ gType:devStage")
        assert design.columns[0] == INTERCEPT
        assert not any("[" in c for c in design.columns)
        assert np.linalg.matrix_rank(design.to_numpy()) == design.shape[1]

    def test_boolean_factor(self, samples):
        frame = samples.assign(treated=[True, False] * 3)
        design = model_matrix(frame, "~ treated")
        assert list(design.columns) == [INTERCEPT, "treatedTrue"]
        np.testing.assert_array_equal(design["treatedTrue"], [1, 0, 1, 0, 1, 0])

    def test_unknown_variable(self, samples):
        with pytest.raises(KeyError, match="Variable 'batch' not found"):
            model_matrix(samples, "~ batch")

    def test_missing_values(self, samples):
        frame = samples.copy()
        frame.loc["s0", "age"] = np.nan
        with pytest.raises(ValueError, match="missing values"):
            model_matrix(frame, "~ age")

    def test_relevel_unknown_level(self, samples):
        with pytest.raises(ValueError, match="is not a level"):
            relevel(samples, "gType", "mutant")

    def test_relevel_keeps_ordering_flag(self, samples):
        out = relevel(samples, "devStage", "P2")
        assert list(out["devStage"].cat.categories) == ["P2", "E16", "4_weeks"]
        assert out["devStage"].cat.ordered
        assert list(samples["devStage"].cat.categories)[0] == "E16"
