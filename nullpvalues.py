import numpy as np
import pandas as pd
import warnings
from abc import ABC, abstractmethod
from scipy.stats import binomtest

from rangerforest import ImportanceMode, InvalidInput, NullDistributionError, ProblemType


class EmpiricalNullTester(ABC):

    @abstractmethod
    def importance_pvalues(self, model, conf_level=0.95):
        """
        Return a DataFrame indexed by variable name with columns
        importance, CI_lower, CI_upper and pvalue.
        """


class JanitzaTester(EmpiricalNullTester):
    """
    p-values from the empirical null distribution of non-positive VIMs.

    The negative importances, their mirror images and the zero importances
    form the null sample; pvalue is the share of null values at or above the
    observed importance. CI_lower/CI_upper are
    Clopper-Pearson bounds for that empirical proportion.

    Janitza, S., Celik, E. & Boulesteix, A.-L. (2018). A computationally fast
    variable importance test for random forests for high-dimensional data.
    Advances in Data Analysis and Classification 12, 885-915.
    """

    def __init__(self, min_negative=100):
        self.min_negative = min_negative

    def importance_pvalues(self, model, conf_level=0.95):
        mode = ImportanceMode(model.importance_mode)
        if mode is ImportanceMode.NONE:
            raise ValueError('No variable importance found. Train with importance="impurity_corrected" or "permutation".')
        if mode is ImportanceMode.IMPURITY:
            raise ValueError('Impurity variable importance found. Please use (hold-out) permutation importance '
                             'or corrected impurity importance to use this method.')
        if mode is ImportanceMode.PERMUTATION and not model.holdout:
            warnings.warn('Permutation variable importance found, inaccurate p-values. Please use hold-out '
                          'permutation importance or corrected impurity importance to use this method.')
        if ProblemType(model.treetype) is ProblemType.CLASSIFICATION:
            warnings.warn('Janitza et al. (2018) only tested the approach with regression data. '
                          'For classification data, use at your own risk.')

        vim = pd.Series(model.variable_importance, dtype=float)
        if vim.isnull().any():
            raise InvalidInput('variable importance contains missing values')

        m1 = vim[vim < 0].to_numpy()
        m2 = vim[vim == 0].to_numpy()
        if m1.size == 0:
            raise NullDistributionError("No negative importance values found. Consider the 'altmann' approach.")
        if m1.size < self.min_negative:
            warnings.warn("Only few negative importance values found, inaccurate p-values. "
                          "Consider the 'altmann' approach.")
        null = np.sort(np.concatenate([m1, -m1, m2]))

        # ties with the null count against the variable, as in ranger's numSmaller
        n_above = null.size - np.searchsorted(null, vim.to_numpy(), side='left')
        pvalue = n_above / null.size
        ci = [binomtest(int(k), null.size).proportion_ci(confidence_level=conf_level, method='exact')
              for k in n_above]

        return pd.DataFrame({
            'importance': vim.to_numpy(),
            'CI_lower': [c.low for c in ci],
            'CI_upper': [c.high for c in ci],
            'pvalue': pvalue,
        }, index=vim.index)


def importance_pvalues(model, conf_level=0.95):
    return JanitzaTester().importance_pvalues(model, conf_level=conf_level)
