import numpy as np
import pandas as pd

from rangerforest import InvalidInput


# positional column types of the gather tables: d = double, c = character
GATHER_COL_TYPES = 'ddddddddcccddddcccd'


def read_gather(path, col_types=GATHER_COL_TYPES):
    header = pd.read_csv(path, nrows=0).columns
    if len(header) != len(col_types):
        raise InvalidInput(f'{path} has {len(header)} columns, expected {len(col_types)} ({col_types})')

    dtypes = {}
    for name, t in zip(header, col_types):
        if t == 'd':
            dtypes[name] = np.float64
        elif t == 'c':
            dtypes[name] = str
        else:
            raise ValueError(f"unknown column type '{t}', use 'd' or 'c'")

    gather = pd.read_csv(path, dtype=dtypes)
    return gather


def simulate_vita_data(no_samples=100, no_informative=2, no_noise=8, effect=2.0, noise_sd=1.0, rng=None):
    """
    Toy regression data with a known generating process.

    All predictors are independent standard normals; y is the sum of the
    informative ones times `effect` plus Gaussian noise.
    Returns (x, y, informative variable names).
    """
    if rng is None:
        rng = np.random.default_rng()

    informative = [f'inf{i + 1}' for i in range(no_informative)]
    noise = [f'noise{i + 1}' for i in range(no_noise)]
    x = pd.DataFrame(rng.standard_normal((no_samples, no_informative + no_noise)), columns=informative + noise)
    y = effect * x[informative].sum(axis=1) + rng.normal(0.0, noise_sd, size=no_samples)
    y.name = 'y'

    return x, y, informative
