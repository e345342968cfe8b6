import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest
from matplotlib.figure import Figure

from modeleval import confusion_matrix, evaluate_model, plot_confusion_matrix, prediction_table, table_accuracy
from varsel import wrapper_rf


def _labels_from_table():
    # observed rows a, b; predicted columns a, b: [[8, 2], [1, 9]]
    observed = ['a'] * 10 + ['b'] * 10
    predicted = ['a'] * 8 + ['b'] * 2 + ['a'] * 1 + ['b'] * 9
    return np.array(observed), np.array(predicted)


def test_accuracy_of_two_by_two_table():
    assert table_accuracy([[8, 2], [1, 9]]) == 0.85


def test_prediction_table_counts():
    observed, predicted = _labels_from_table()
    tab = prediction_table(observed, predicted)
    np.testing.assert_array_equal(tab.to_numpy(), [[8, 2], [1, 9]])
    assert table_accuracy(tab) == 0.85


def test_prediction_table_is_square_with_unpredicted_levels():
    tab = prediction_table(['a', 'b', 'c'], ['a', 'a', 'a'])
    assert tab.shape == (3, 3)
    assert list(tab.index) == list(tab.columns) == ['a', 'b', 'c']


def test_confusion_matrix_statistics():
    observed, predicted = _labels_from_table()
    cm = confusion_matrix(data=predicted, reference=observed)

    np.testing.assert_array_equal(cm.table.to_numpy(), [[8, 1], [2, 9]])
    assert cm.table.index.name == 'Prediction'
    assert cm.overall['Accuracy'] == pytest.approx(0.85)
    assert cm.overall['Kappa'] == pytest.approx(0.7)
    assert cm.overall['AccuracyNull'] == pytest.approx(0.5)
    assert cm.overall['AccuracyLower'] < 0.85 < cm.overall['AccuracyUpper']
    assert cm.overall['AccuracyPValue'] < 0.01


def test_plot_confusion_matrix_caption_and_title():
    observed, predicted = _labels_from_table()
    fig = plot_confusion_matrix(confusion_matrix(predicted, observed), plot_title='toy')

    assert isinstance(fig, Figure)
    assert fig.get_supxlabel() == 'Accuracy 85% Kappa 70%'
    ax = fig.axes[0]
    assert ax.get_title() == 'toy'
    assert ax.get_xlabel() == 'Reference'
    assert ax.get_ylabel() == 'Prediction'
    assert sorted(t.get_text() for t in ax.texts) == ['1', '2', '8', '9']
    plt.close(fig)


def test_evaluate_model_returns_figure(capsys):
    rng = np.random.default_rng(3)
    x = pd.DataFrame({'signal': np.r_[rng.normal(-2, 0.5, 50), rng.normal(2, 0.5, 50)],
                      'noise': rng.standard_normal(100)})
    y = pd.Series(['dry'] * 50 + ['wet'] * 50)
    rf = wrapper_rf(x, y, ntree=30, treetype='classification', importance='none', rng=rng)

    fig = evaluate_model(rf, x, y, plt_title='Training data')

    assert isinstance(fig, Figure)
    assert 'ACCURACY = ' in capsys.readouterr().out
    assert fig.axes[0].get_title() == 'Training data'
    plt.close(fig)


def test_evaluate_model_on_probability_forest():
    rng = np.random.default_rng(4)
    x = pd.DataFrame({'signal': np.r_[rng.normal(-2, 0.5, 30), rng.normal(2, 0.5, 30)]})
    y = np.r_[np.zeros(30, dtype=int), np.ones(30, dtype=int)]
    rf = wrapper_rf(x, y, ntree=20, treetype='probability', importance='none', rng=rng)

    fig = evaluate_model(rf, x, y)
    assert fig.axes[0].get_title() == ''
    plt.close(fig)
