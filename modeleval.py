import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.colors import LinearSegmentedColormap
from scipy.stats import binomtest
from sklearn.metrics import cohen_kappa_score

from rangerforest import DimensionMismatch


class ConfusionMatrix:

    def __init__(self, table, overall):
        self.table = table
        self.overall = overall


def prediction_table(observed, predicted):
    observed = np.asarray(observed)
    predicted = np.asarray(predicted)
    if observed.shape[0] != predicted.shape[0]:
        raise DimensionMismatch('observed and predicted have different lengths')
    levels = np.union1d(observed, predicted)
    table = pd.crosstab(pd.Series(observed, name='observed'), pd.Series(predicted, name='predicted'))
    return table.reindex(index=levels, columns=levels, fill_value=0)


def table_accuracy(table):
    table = np.asarray(table)
    return np.trace(table) / table.sum()


def confusion_matrix(data, reference, conf_level=0.95):
    """
    Confusion matrix of predicted classes (`data`) against `reference`.

    table has Prediction in rows and Reference in columns. overall holds
    Accuracy, Kappa, the exact binomial CI of the accuracy (AccuracyLower,
    AccuracyUpper), the no-information rate (AccuracyNull) and the one-sided
    binomial p-value of Accuracy > AccuracyNull (AccuracyPValue).
    """
    table = prediction_table(data, reference)
    table.index.name = 'Prediction'
    table.columns.name = 'Reference'

    counts = table.to_numpy()
    n = int(counts.sum())
    correct = int(np.trace(counts))
    no_info = counts.sum(axis=0).max() / n
    ci = binomtest(correct, n).proportion_ci(confidence_level=conf_level, method='exact')

    overall = pd.Series({
        'Accuracy': correct / n,
        'Kappa': cohen_kappa_score(np.asarray(reference), np.asarray(data), labels=table.columns.to_numpy()),
        'AccuracyLower': ci.low,
        'AccuracyUpper': ci.high,
        'AccuracyNull': no_info,
        'AccuracyPValue': binomtest(correct, n, no_info, alternative='greater').pvalue,
    })
    return ConfusionMatrix(table, overall)


def percent(x):
    return f'{x:.0%}'


def plot_confusion_matrix(m, plot_title=None, eps=0.1):
    caption = f"Accuracy {percent(m.overall['Accuracy'])} Kappa {percent(m.overall['Kappa'])}"
    counts = m.table.to_numpy()
    cmap = LinearSegmentedColormap.from_list('white_to_steelblue', ['white', 'steelblue'])

    fig, ax = plt.subplots(1, 1, figsize=(4, 3.5), layout='constrained')
    sns.heatmap(np.log(counts + eps), annot=counts, fmt='d', cmap=cmap, cbar=False, linewidths=1,
                linecolor='white', annot_kws={'fontsize': 9, 'color': 'k'},
                xticklabels=list(m.table.columns), yticklabels=list(m.table.index), ax=ax)
    ax.invert_yaxis()  # first level at the bottom
    ax.set_xlabel('Reference', fontsize=9)
    ax.set_ylabel('Prediction', fontsize=9)
    ax.tick_params(axis='x', labelrotation=90, labelsize=7)
    ax.tick_params(axis='y', labelrotation=0, labelsize=7)
    if plot_title is not None:
        ax.set_title(plot_title, fontsize=9, loc='center')
    fig.supxlabel(caption, x=0.98, ha='right', fontsize=8)

    return fig


def evaluate_model(optimal_ranger, data, reference_class, plt_title=None):

    # calculate prediction accuracy
    pred = optimal_ranger.predict(data)
    if isinstance(pred, pd.DataFrame):
        pred = pred.idxmax(axis=1).to_numpy()
    pred_tab = prediction_table(reference_class, pred)

    performance = table_accuracy(pred_tab)
    print(f'ACCURACY = {performance:0.3f}')

    cm = confusion_matrix(data=pred, reference=reference_class)
    return plot_confusion_matrix(cm, plot_title=plt_title)
