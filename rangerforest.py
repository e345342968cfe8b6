import numpy as np
import pandas as pd
import warnings
from abc import ABC, abstractmethod
from enum import Enum
from joblib import Parallel, delayed
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor


class DimensionMismatch(ValueError):
    pass


class InvalidInput(ValueError):
    pass


class TypeMismatch(TypeError):
    pass


class UnsupportedMethod(ValueError):
    pass


class NullDistributionError(ValueError):
    pass


class ProblemType(Enum):
    REGRESSION = 'regression'
    CLASSIFICATION = 'classification'
    PROBABILITY = 'probability'


class ImportanceMode(Enum):
    NONE = 'none'
    IMPURITY = 'impurity'
    IMPURITY_CORRECTED = 'impurity_corrected'
    PERMUTATION = 'permutation'


class TrainableForest(ABC):
    """
    Capability boundary for a random-forest training engine.

    A fitted forest exposes `variable_importance` (pandas Series indexed by
    variable name, or None when no importance was requested), `treetype`,
    `importance_mode`, `holdout` and `predict(data)`.
    """

    treetype = None
    importance_mode = None
    variable_importance = None
    holdout = False

    @abstractmethod
    def fit(self, x, y, case_weights=None):
        pass

    @abstractmethod
    def predict(self, data):
        pass


class RangerForest(TrainableForest):
    """
    Random forest with ranger semantics, grown from scikit-learn decision trees.

    Differences from sklearn's own RandomForest* estimators that matter here:
      - case weights steer the per-tree sample draw, with or without replacement;
      - holdout mode keeps zero-weight samples out of every tree and uses them
        as the out-of-bag set for permutation importance;
      - impurity_corrected importance (actual impurity minus the impurity of a
        permuted shadow copy of each variable), so noise variables score
        around zero and can go negative.
    """

    def __init__(self, num_trees=500, mtry=None, min_node_size=0, treetype=ProblemType.REGRESSION,
                 importance=ImportanceMode.NONE, replace=True, sample_fraction=None, holdout=False,
                 num_threads=1, write_forest=True, rng=None):
        if rng is None:
            rng = np.random.default_rng()
        if sample_fraction is None:
            sample_fraction = 1.0 if replace else 0.632
        if not 0 < sample_fraction <= 1:
            raise InvalidInput(f'sample_fraction must be in (0, 1], got {sample_fraction}')

        self.num_trees = num_trees
        self.mtry = mtry
        self.min_node_size = min_node_size
        self.treetype = ProblemType(treetype)
        self.importance_mode = ImportanceMode(importance)
        self.replace = replace
        self.sample_fraction = sample_fraction
        self.holdout = holdout
        self.num_threads = num_threads
        self.write_forest = write_forest
        self.rng = rng

        self.trees = None
        self.variable_importance = None
        self.prediction_error = None

    def fit(self, x, y, case_weights=None):
        x = as_feature_frame(x)
        n, p = x.shape
        if len(y) != n:
            raise DimensionMismatch('length of y and number of rows in x are different')
        if x.columns.duplicated().any():
            raise InvalidInput('variable names must be unique')

        self.variable_names = list(x.columns)
        X = x.to_numpy(dtype=float)
        y_fit = self._encode_outcome(y)

        if case_weights is None:
            if self.holdout:
                raise InvalidInput('case weights required to use holdout mode')
            weights = np.ones(n)
        else:
            weights = np.asarray(case_weights, dtype=float)
            if weights.shape[0] != n:
                raise DimensionMismatch('length of case_weights and number of rows in x are different')
            if (weights < 0).any():
                raise InvalidInput('case weights must be non-negative')

        eligible = np.flatnonzero(weights > 0)
        if eligible.size == 0:
            raise InvalidInput('all case weights are zero')
        holdout_idx = np.flatnonzero(weights == 0) if self.holdout else None
        draw_size = max(1, int(np.floor(self.sample_fraction * eligible.size)))
        draw_p = weights[eligible] / weights[eligible].sum()

        # shadow variables: same marginals, no association with y
        if self.importance_mode is ImportanceMode.IMPURITY_CORRECTED:
            shadow = np.column_stack([self.rng.permutation(X[:, j]) for j in range(p)])
            X_fit = np.hstack([X, shadow])
        else:
            X_fit = X
        self._shadow_seed = int(self.rng.integers(np.iinfo(np.int32).max))

        mtry = self.mtry if self.mtry is not None else max(1, int(np.floor(np.sqrt(p))))
        seeds = self.rng.integers(np.iinfo(np.int32).max, size=self.num_trees)
        grown = Parallel(n_jobs=self.num_threads, prefer='threads')(
            delayed(_grow_tree)(X_fit, y_fit, eligible, draw_p, draw_size, self.replace, holdout_idx,
                                self.treetype, mtry, max(1, self.min_node_size), self.importance_mode,
                                p, self.n_classes, int(seed))
            for seed in seeds
        )
        trees = [g[0] for g in grown]
        self.inbag = [g[1] for g in grown]
        self.oob = [g[2] for g in grown]

        self.variable_importance = self._aggregate_importance([g[3] for g in grown], p)
        self.prediction_error = self._oob_prediction_error(trees, X_fit, y_fit)
        self.trees = trees if self.write_forest else None
        return self

    def predict(self, data):
        if self.trees is None:
            raise ValueError('no saved forest to predict with; fit with write_forest=True')
        X = self._prediction_matrix(data)
        if self.treetype is ProblemType.REGRESSION:
            return np.mean([tree.predict(X) for tree in self.trees], axis=0)
        if self.treetype is ProblemType.CLASSIFICATION:
            votes = np.zeros((X.shape[0], self.n_classes))
            rows = np.arange(X.shape[0])
            for tree in self.trees:
                votes[rows, tree.predict(X).astype(int)] += 1
            return np.asarray(self.classes_)[votes.argmax(axis=1)]
        proba = np.mean([_tree_proba(tree, X, self.n_classes) for tree in self.trees], axis=0)
        return pd.DataFrame(proba, columns=self.classes_)

    def _encode_outcome(self, y):
        if self.treetype is ProblemType.REGRESSION:
            self.classes_ = None
            self.n_classes = 0
            return np.asarray(y, dtype=float)
        categorical = pd.Categorical(y)
        if (categorical.codes < 0).any():
            raise InvalidInput('missing values are not allowed in y')
        self.classes_ = categorical.categories
        self.n_classes = len(categorical.categories)
        return categorical.codes.astype(int)

    def _prediction_matrix(self, data):
        x = as_feature_frame(data)
        missing = [v for v in self.variable_names if v not in x.columns]
        if missing:
            if x.shape[1] != len(self.variable_names):
                raise DimensionMismatch(f'prediction data is missing variables: {missing}')
            x.columns = self.variable_names
        X = x[self.variable_names].to_numpy(dtype=float)
        if self.importance_mode is ImportanceMode.IMPURITY_CORRECTED:
            rng = np.random.default_rng(self._shadow_seed)
            X = np.hstack([X, np.column_stack([rng.permutation(X[:, j]) for j in range(X.shape[1])])])
        return X

    def _aggregate_importance(self, tree_vims, p):
        mode = self.importance_mode
        if mode is ImportanceMode.NONE:
            return None
        if mode is ImportanceMode.PERMUTATION:
            tree_vims = [v for v in tree_vims if v is not None]
            if not tree_vims:
                warnings.warn('No out-of-bag samples in any tree, permutation importance is undefined.')
                return pd.Series(np.nan, index=self.variable_names, dtype=float)
            return pd.Series(np.mean(tree_vims, axis=0), index=self.variable_names)
        vim = np.mean(tree_vims, axis=0)
        if mode is ImportanceMode.IMPURITY_CORRECTED:
            vim = vim[:p] - vim[p:]
        return pd.Series(vim, index=self.variable_names)

    def _oob_prediction_error(self, trees, X, y):
        n = X.shape[0]
        counts = np.zeros(n)
        if self.treetype is ProblemType.REGRESSION:
            sums = np.zeros(n)
        else:
            sums = np.zeros((n, self.n_classes))
        for tree, oob in zip(trees, self.oob):
            if oob.size == 0:
                continue
            counts[oob] += 1
            if self.treetype is ProblemType.REGRESSION:
                sums[oob] += tree.predict(X[oob])
            elif self.treetype is ProblemType.CLASSIFICATION:
                sums[oob, tree.predict(X[oob]).astype(int)] += 1
            else:
                sums[oob] += _tree_proba(tree, X[oob], self.n_classes)

        seen = counts > 0
        if not seen.any():
            return np.nan
        if self.treetype is ProblemType.REGRESSION:
            return float(np.mean((sums[seen] / counts[seen] - y[seen]) ** 2))
        if self.treetype is ProblemType.CLASSIFICATION:
            return float(np.mean(sums[seen].argmax(axis=1) != y[seen]))
        proba = sums[seen] / counts[seen, None]
        return float(np.mean(np.sum((proba - np.eye(self.n_classes)[y[seen]]) ** 2, axis=1)))


def as_feature_frame(x):
    if isinstance(x, pd.DataFrame):
        return x.copy()
    x = np.asarray(x)
    if x.ndim != 2:
        raise DimensionMismatch(f'x must be two-dimensional, got {x.ndim} dimension(s)')
    return pd.DataFrame(x, columns=[f'X{j + 1}' for j in range(x.shape[1])])


def _grow_tree(X, y, eligible, draw_p, draw_size, replace, holdout_idx, treetype, mtry, min_leaf,
               importance, p, n_classes, seed):
    rng = np.random.default_rng(seed)
    inbag = rng.choice(eligible, size=draw_size, replace=replace, p=draw_p)
    if holdout_idx is not None:
        oob = holdout_idx
    else:
        oob = np.setdiff1d(np.arange(X.shape[0]), inbag)

    if treetype is ProblemType.REGRESSION:
        tree = DecisionTreeRegressor(max_features=mtry, min_samples_leaf=min_leaf, random_state=seed)
    else:
        tree = DecisionTreeClassifier(max_features=mtry, min_samples_leaf=min_leaf, random_state=seed)
    tree.fit(X[inbag], y[inbag])

    vim = None
    if importance is ImportanceMode.PERMUTATION:
        vim = _tree_permutation_importance(tree, X, y, oob, treetype, p, n_classes, rng)
    elif importance in (ImportanceMode.IMPURITY, ImportanceMode.IMPURITY_CORRECTED):
        vim = tree.tree_.compute_feature_importances(normalize=False)
    return tree, inbag, oob, vim


def _tree_permutation_importance(tree, X, y, oob, treetype, p, n_classes, rng):
    if oob.size == 0:
        return None
    X_oob = X[oob]
    y_oob = y[oob]
    baseline = _tree_error(tree, X_oob, y_oob, treetype, n_classes)
    vim = np.zeros(p)
    for j in range(p):
        X_perm = X_oob.copy()
        X_perm[:, j] = rng.permutation(X_perm[:, j])
        vim[j] = _tree_error(tree, X_perm, y_oob, treetype, n_classes) - baseline
    return vim


def _tree_error(tree, X, y, treetype, n_classes):
    if treetype is ProblemType.REGRESSION:
        return np.mean((tree.predict(X) - y) ** 2)
    if treetype is ProblemType.CLASSIFICATION:
        return np.mean(tree.predict(X).astype(int) != y)
    proba = _tree_proba(tree, X, n_classes)
    return np.mean(np.sum((proba - np.eye(n_classes)[y]) ** 2, axis=1))


def _tree_proba(tree, X, n_classes):
    # a tree only knows the classes present in its own sample
    proba = np.zeros((X.shape[0], n_classes))
    proba[:, tree.classes_.astype(int)] = tree.predict_proba(X)
    return proba
