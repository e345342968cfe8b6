import numpy as np
import os
import pandas as pd
import pickle
from joblib import Parallel, delayed

from nullpvalues import JanitzaTester
from rangerforest import (DimensionMismatch, ImportanceMode, InvalidInput, ProblemType, RangerForest,
                          TypeMismatch, UnsupportedMethod, as_feature_frame)


def wrapper_rf(x, y, ntree=500, mtry_prop=0.2, nodesize_prop=0.1, no_threads=1, method='ranger',
               treetype='regression', importance='impurity_corrected', case_weights=None, rng=None, **kwargs):
    """
    Train a random forest with hyperparameters given as proportions.

    x: DataFrame (or 2-D array) of predictors, samples in rows; no missing values.
    y: outcome, one value per row of x; converted to categorical for
       classification and probability forests.
    mtry_prop: proportion of variables tried at each split (at least one).
    nodesize_prop: proportion of samples giving the minimal terminal node size.
    method: forest implementation, only 'ranger' is available.
    treetype: 'regression', 'classification' or 'probability'.
    importance: 'none', 'impurity', 'impurity_corrected' or 'permutation'.
    case_weights: sampling weights of the training observations.
    kwargs: passed on to RangerForest (replace, sample_fraction, holdout, write_forest).

    Returns a fitted RangerForest.
    """
    x = as_feature_frame(x)
    if len(y) != x.shape[0]:
        raise DimensionMismatch('length of y and number of rows in x are different')

    if x.isnull().to_numpy().any():
        raise InvalidInput('missing values are not allowed')

    treetype = ProblemType(treetype)
    importance = ImportanceMode(importance)
    if treetype in (ProblemType.PROBABILITY, ProblemType.REGRESSION) and not is_numeric_outcome(y):
        raise TypeMismatch('only numeric y allowed for probability or regression mode')

    nodesize = int(np.floor(nodesize_prop * x.shape[0]))
    mtry = int(np.floor(mtry_prop * x.shape[1]))
    if mtry == 0:
        mtry = 1

    if treetype in (ProblemType.CLASSIFICATION, ProblemType.PROBABILITY):
        y = pd.Categorical(y)

    if method != 'ranger':
        raise UnsupportedMethod(f"method {method} undefined. Use 'ranger'.")

    rf = RangerForest(num_trees=ntree, mtry=mtry, min_node_size=nodesize, treetype=treetype,
                      importance=importance, num_threads=no_threads, rng=rng, **kwargs)
    return rf.fit(x, y, case_weights=case_weights)


def is_numeric_outcome(y):
    if isinstance(y, (pd.Series, pd.Categorical, pd.Index)):
        return pd.api.types.is_numeric_dtype(y.dtype)
    return pd.api.types.is_numeric_dtype(np.asarray(y).dtype)


class HoldoutRF:
    """
    Pair of forests trained on complementary holdout folds.

    rf1 was trained with case weights `weights`, rf2 with `1 - weights`;
    each forest computes its importance on the samples it held out.
    """

    holdout = True

    def __init__(self, rf1, rf2, weights):
        self.rf1 = rf1
        self.rf2 = rf2
        self.weights = weights
        self.variable_importance = (rf1.variable_importance + rf2.variable_importance) / 2
        self.treetype = rf1.treetype
        self.importance_mode = rf1.importance_mode

    @property
    def fold_weights(self):
        return self.weights, 1 - self.weights


def holdout_rf(x, y, ntree=500, mtry_prop=0.2, nodesize_prop=0.1, no_threads=1, method='ranger',
               treetype='regression', importance='impurity_corrected', rng=None, parallel_folds=False):
    """
    Hold-out variable importance with two folds (Janitza et al. 2018).

    Every sample goes to one of two folds by a fair coin flip. One forest is
    trained on each fold, sampling without replacement, and computes its
    importance on the other fold; the returned importance is the mean of the two.
    """
    if method != 'ranger':
        raise UnsupportedMethod(f"method {method} undefined. Use 'ranger'.")
    if rng is None:
        rng = np.random.default_rng()

    x = as_feature_frame(x)
    weights = rng.binomial(1, 0.5, size=x.shape[0])
    fold_rngs = rng.spawn(2)

    fit_kwargs = dict(ntree=ntree, mtry_prop=mtry_prop, nodesize_prop=nodesize_prop, no_threads=no_threads,
                      method=method, treetype=treetype, importance=importance, replace=False, holdout=True)
    folds = [(weights, fold_rngs[0]), (1 - weights, fold_rngs[1])]
    if parallel_folds:
        rf1, rf2 = Parallel(n_jobs=2, prefer='threads')(
            delayed(wrapper_rf)(x, y, case_weights=w, rng=r, **fit_kwargs) for w, r in folds
        )
    else:
        rf1, rf2 = [wrapper_rf(x, y, case_weights=w, rng=r, **fit_kwargs) for w, r in folds]

    return HoldoutRF(rf1, rf2, weights)


class VitaResult:

    def __init__(self, info, var, holdout=None):
        self.info = info
        self.var = var
        self.holdout = holdout


def var_sel_vita(x, y, p_t=0.05, ntree=500, mtry_prop=0.2, nodesize_prop=0.1, no_threads=1, method='ranger',
                 treetype='regression', importance='impurity_corrected', rng=None, tester=None, parallel_folds=False):
    """
    Variable selection using the Vita approach.

    p-values come from the empirical null distribution of non-positive
    hold-out VIMs (Janitza et al. 2018). All variables with a p-value of 0 or
    below p_t are selected.

    Returns a VitaResult with
      info: DataFrame indexed by variable with vim, CI_lower, CI_upper,
            pvalue and selected (0/1);
      var:  sorted list of the selected variables.
    """
    if method != 'ranger':
        raise UnsupportedMethod(f"method {method} undefined. Use 'ranger'.")
    if tester is None:
        tester = JanitzaTester()

    res_holdout = holdout_rf(x, y, ntree=ntree, mtry_prop=mtry_prop, nodesize_prop=nodesize_prop,
                             no_threads=no_threads, method=method, treetype=treetype, importance=importance,
                             rng=rng, parallel_folds=parallel_folds)

    res_janitza = tester.importance_pvalues(res_holdout, conf_level=0.95)
    res_janitza = res_janitza.rename(columns={'importance': 'vim'})

    # p == 0 is kept as its own condition, it is not the same as p <= p_t
    ind_sel = ((res_janitza['pvalue'] == 0) | (res_janitza['pvalue'] < p_t)).astype(int)

    info = res_janitza.assign(selected=ind_sel)
    var = sorted(set(info.index[info['selected'] == 1]))
    return VitaResult(info, var, res_holdout)


class VitaHandler:

    def __init__(self, rf_kwargs={'ntree': 500, 'mtry_prop': 0.2, 'nodesize_prop': 0.1, 'no_threads': 1, 'treetype': 'regression', 'importance': 'impurity_corrected'}, vita_kwargs={'p_t': 0.05}):
        self.rf_kwargs = dict(rf_kwargs)
        self.vita_kwargs = dict(vita_kwargs)

    def wrapper_rf(self, x, y, rng=None, **kwargs):
        rf_kwargs = {**self.rf_kwargs, **kwargs}
        return wrapper_rf(x, y, rng=rng, **rf_kwargs)

    def holdout_rf(self, x, y, rng=None):
        return holdout_rf(x, y, rng=rng, **self.rf_kwargs)

    def var_sel_vita(self, x, y, rng=None):
        result = var_sel_vita(x, y, rng=rng, **self.vita_kwargs, **self.rf_kwargs)

        p_t = self.vita_kwargs.get('p_t', 0.05)
        print(f' Selected {len(result.var)} of {result.info.shape[0]} variables (p = 0 or p < {p_t})')
        print(f' Selected variables: {result.var}')
        return result

    def save_result(self, result, out_dir, suffix=''):
        result_name = 'vita' + str(suffix) + '.pkl'
        info_name = 'vita_info' + str(suffix) + '.csv'
        with open(os.path.join(out_dir, result_name), 'wb') as f:
            pickle.dump(result, f)
        result.info.to_csv(os.path.join(out_dir, info_name), index_label='variable')
        print(f' Saved {result_name} and {info_name} to {out_dir}')

    def load_result(self, result_path):
        with open(result_path, 'rb') as f:
            result = pickle.load(f)
        return result
