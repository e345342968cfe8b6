import warnings
from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

from nullpvalues import JanitzaTester, importance_pvalues
from rangerforest import ImportanceMode, InvalidInput, NullDistributionError, ProblemType


def _model(vim, mode=ImportanceMode.IMPURITY_CORRECTED, treetype=ProblemType.REGRESSION, holdout=True):
    return SimpleNamespace(variable_importance=pd.Series(vim, index=[f'v{i}' for i in range(len(vim))]),
                           importance_mode=mode, treetype=treetype, holdout=holdout)


def test_pvalues_from_mirrored_null():
    model = _model([-0.2, -0.1, 0.0, 0.05, 0.3])
    with pytest.warns(UserWarning, match='few negative'):
        res = importance_pvalues(model)

    # null sample: -0.2, -0.1, 0.0, 0.1, 0.2; p = #(null >= vim) / 5
    np.testing.assert_allclose(res['pvalue'], [1.0, 0.8, 0.6, 0.4, 0.0])
    assert res.loc['v4', 'pvalue'] == 0
    assert list(res.columns) == ['importance', 'CI_lower', 'CI_upper', 'pvalue']
    assert (res['CI_lower'] <= res['pvalue']).all()
    assert (res['pvalue'] <= res['CI_upper']).all()


def test_no_warning_with_enough_negative_values():
    rng = np.random.default_rng(0)
    vim = np.r_[-np.abs(rng.normal(size=150)), np.abs(rng.normal(size=150))]
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        res = JanitzaTester().importance_pvalues(_model(vim), conf_level=0.9)
    assert res.shape == (300, 4)


def test_requires_negative_importance():
    with pytest.raises(NullDistributionError):
        JanitzaTester().importance_pvalues(_model([0.0, 0.1, 0.4]))


@pytest.mark.parametrize('mode', [ImportanceMode.IMPURITY, ImportanceMode.NONE])
def test_rejects_uncorrected_importance(mode):
    with pytest.raises(ValueError):
        JanitzaTester().importance_pvalues(_model([-0.1, 0.2], mode=mode))


def test_warns_for_non_holdout_permutation_and_classification():
    model = _model([-0.1, 0.2], mode=ImportanceMode.PERMUTATION, treetype=ProblemType.CLASSIFICATION,
                   holdout=False)
    with pytest.warns(UserWarning) as record:
        JanitzaTester(min_negative=1).importance_pvalues(model)
    messages = ' '.join(str(w.message) for w in record)
    assert 'hold-out' in messages
    assert 'regression data' in messages


def test_rejects_missing_importance():
    with pytest.raises(InvalidInput):
        JanitzaTester(min_negative=1).importance_pvalues(_model([-0.1, np.nan]))


def test_importance_tied_with_null_maximum_is_not_zero():
    model = _model([-0.2, -0.1, 0.0, 0.05, 0.2])
    with pytest.warns(UserWarning, match='few negative'):
        res = importance_pvalues(model)

    # 0.2 equals the mirrored -0.2, so one null value is at or above it
    np.testing.assert_allclose(res['pvalue'], [1.0, 0.8, 0.6, 0.4, 0.2])
    assert res.loc['v4', 'pvalue'] > 0


def test_probability_forest_has_no_classification_warning():
    model = _model([-0.1, 0.2], treetype=ProblemType.PROBABILITY)
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        res = JanitzaTester(min_negative=1).importance_pvalues(model)
    assert res.loc['v1', 'pvalue'] == 0
