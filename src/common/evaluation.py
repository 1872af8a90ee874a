# ABOUTME: Defines evaluation helpers shared by the training pipeline and reports.
# ABOUTME: Computes AUC, Brier, MAE, and calibration metrics for validation splits.

from typing import Iterable, Mapping

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    average_precision_score,
    brier_score_loss,
    mean_absolute_error,
    roc_auc_score,
)


def evaluate_predictions(predictions: pd.DataFrame, metrics: Iterable[str]) -> Mapping[str, float]:
    """
    Evaluate predictions dataframe using the requested metric names.

    Parameters
    ----------
    predictions : pd.DataFrame
        Expected columns: ['y_true', 'y_pred'] plus optional metadata.
    metrics : Iterable[str]
        Metric identifiers such as 'auc', 'brier', 'mae', 'accuracy',
        'average_precision', 'calibration_ece'.
    """

    metrics = list(metrics)
    if predictions is None or len(predictions) == 0:
        return {metric: np.nan for metric in metrics}

    y_true = predictions["y_true"].astype(float)
    y_pred = predictions["y_pred"].astype(float).clip(0.0, 1.0)
    single_class = len(np.unique(y_true)) < 2

    results = {}
    for metric in metrics:
        if metric == "auc":
            # roc_auc_score requires both classes; return 0.0 when degenerate.
            results[metric] = 0.0 if single_class else float(roc_auc_score(y_true, y_pred))
        elif metric == "average_precision":
            results[metric] = 0.0 if single_class else float(average_precision_score(y_true, y_pred))
        elif metric == "brier":
            results[metric] = float(brier_score_loss(y_true.astype(int), y_pred))
        elif metric == "mae":
            results[metric] = float(mean_absolute_error(y_true, y_pred))
        elif metric == "accuracy":
            results[metric] = float(accuracy_score(y_true.astype(int), (y_pred >= 0.5).astype(int)))
        elif metric == "calibration_ece":
            results[metric] = float(_expected_calibration_error(y_true, y_pred))
        else:
            raise ValueError(f"Unsupported metric '{metric}'.")

    return results


def validation_score(y_true: np.ndarray, y_pred: np.ndarray, binary: bool) -> float:
    """
    Higher-is-better score used for promotion decisions.

    Binary targets use 1 - Brier score, regression targets 1 - MAE; both stay
    defined when the validation split holds a single class.
    """

    frame = pd.DataFrame({"y_true": y_true, "y_pred": y_pred})
    metric = "brier" if binary else "mae"
    return 1.0 - evaluate_predictions(frame, [metric])[metric]


def _expected_calibration_error(y_true: pd.Series, y_pred: pd.Series, num_bins: int = 10) -> float:
    """
    Compute expected calibration error using equal-width bins between 0 and 1.
    """

    bins = np.linspace(0.0, 1.0, num_bins + 1)
    digitized = np.clip(np.digitize(y_pred, bins) - 1, 0, num_bins - 1)
    total = len(y_true)
    if total == 0:
        return np.nan

    ece = 0.0
    for b in range(num_bins):
        mask = digitized == b
        count = mask.sum()
        if count == 0:
            continue
        bin_true = y_true[mask]
        bin_pred = y_pred[mask]
        acc = bin_true.mean()
        conf = bin_pred.mean()
        ece += (count / total) * abs(acc - conf)
    return ece
