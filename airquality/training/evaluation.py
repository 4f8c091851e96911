"""Resampled evaluation of regression model families.

Cross-validation, grid search over hyperparameter combinations, metric
aggregation and selection of the best combination. Every (combination, fold)
unit trains an independent model, so units may run on a worker pool; results
are merged back in grid-then-fold order so output never depends on scheduling.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from logging import getLogger
from typing import Any

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, r2_score, root_mean_squared_error
from tqdm.auto import tqdm

from airquality.data.utils import DEFAULT_DIRECTIONS, DIRECTIONS, MAXIMIZE, METRIC_NAMES
from airquality.exceptions import (
    EmptySummaryError,
    InsufficientDataError,
    InvalidConfigurationError,
    ModelFitError,
)
from airquality.training.grids import check_grid, config_name
from airquality.training.models import Formula, ModelFamily
from airquality.training.resampling import FoldAssignment, Split, make_folds

logger = getLogger(__name__)

SUMMARY_COLUMNS = ["config", "config_index", "params", "metric", "mean", "n", "std_err"]


@dataclass(frozen=True)
class MetricRecord:
    """Metrics of one hyperparameter combination on one held-out fold.

    `error` is None for a successful fold; otherwise it holds the fitting
    failure and `metrics` is empty.
    """

    config: str
    config_index: int
    params: dict[str, Any]
    fold: int
    metrics: dict[str, float] = field(default_factory=dict)
    n_assessment: int = 0
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def regression_metrics(truth, estimate) -> dict[str, float]:
    """Compute rmse, rsq (1 - SS_res / SS_tot) and mae of predictions."""
    return {
        "rmse": float(root_mean_squared_error(truth, estimate)),
        "rsq": float(r2_score(truth, estimate)),
        "mae": float(mean_absolute_error(truth, estimate)),
    }


def resolve_direction(metric_name: str, direction: str | None = None) -> str:
    if metric_name not in METRIC_NAMES:
        raise InvalidConfigurationError(
            f"Unknown metric {metric_name!r}, expected one of {METRIC_NAMES}"
        )
    if direction is None:
        direction = DEFAULT_DIRECTIONS.get(metric_name)
    if direction not in DIRECTIONS:
        raise InvalidConfigurationError(
            f"Direction for {metric_name!r} must be one of {DIRECTIONS}, got {direction!r}"
        )
    return direction


def _check_training_data(
    train: pd.DataFrame, folds: FoldAssignment, formula: Formula
) -> None:
    if len(folds) != len(train):
        raise InvalidConfigurationError(
            f"Fold assignment covers {len(folds)} records, training set has {len(train)}"
        )
    missing = [column for column in formula.columns if column not in train.columns]
    if missing:
        raise InsufficientDataError(f"Training records lack formula fields: {missing}")
    incomplete = int(train[formula.columns].isna().any(axis=1).sum())
    if incomplete:
        raise InsufficientDataError(
            f"{incomplete} training records lack a value for a field of {formula}"
        )
    for fold, size in enumerate(folds.fold_sizes()):
        if size == 0:
            raise InsufficientDataError(f"Fold {fold} holds no record")
        if size == len(train):
            raise InsufficientDataError(f"Fold {fold} leaves no record to train on")


def _evaluate_fold(
    train: pd.DataFrame,
    folds: FoldAssignment,
    fold: int,
    model_family: ModelFamily,
    hyperparams: dict[str, Any],
    formula: Formula,
    config_index: int,
) -> MetricRecord:
    analysis = train.iloc[folds.analysis(fold)]
    assessment = train.iloc[folds.assessment(fold)]
    record = dict(
        config=config_name(config_index),
        config_index=config_index,
        params=dict(hyperparams),
        fold=fold,
        n_assessment=len(assessment),
    )
    try:
        estimate = model_family.fit(analysis, hyperparams, formula).predict(assessment)
    except ModelFitError as e:
        e.params, e.fold = dict(hyperparams), fold
        logger.warning(f"Skipping fold {fold} of {record['config']}: {e}")
        return MetricRecord(**record, error=str(e))
    return MetricRecord(
        **record, metrics=regression_metrics(assessment[formula.target], estimate)
    )


def _run_units(
    train: pd.DataFrame,
    folds: FoldAssignment,
    model_family: ModelFamily,
    grid: list[dict[str, Any]],
    formula: Formula,
    n_jobs: int = 1,
    show_progress: bool = False,
) -> list[MetricRecord]:
    units = [
        (config_index, hyperparams, fold)
        for config_index, hyperparams in enumerate(grid)
        for fold in range(folds.v)
    ]
    progress = tqdm(
        total=len(units), desc=model_family.name, disable=not show_progress, leave=False
    )
    with progress:
        if n_jobs == 1:
            results = []
            for config_index, hyperparams, fold in units:
                results.append(
                    _evaluate_fold(
                        train, folds, fold, model_family, hyperparams, formula, config_index
                    )
                )
                progress.update()
            return results

        collected: dict[tuple[int, int], MetricRecord] = {}
        with ThreadPoolExecutor(max_workers=n_jobs if n_jobs > 0 else None) as executor:
            futures = {
                executor.submit(
                    _evaluate_fold,
                    train,
                    folds,
                    fold,
                    model_family,
                    hyperparams,
                    formula,
                    config_index,
                ): (config_index, fold)
                for config_index, hyperparams, fold in units
            }
            for future in as_completed(futures):
                collected[futures[future]] = future.result()
                progress.update()
    return [collected[(config_index, fold)] for config_index, _, fold in units]


def cross_validate(
    train: pd.DataFrame,
    folds: FoldAssignment,
    model_family: ModelFamily,
    hyperparams: dict[str, Any],
    formula: Formula,
    n_jobs: int = 1,
) -> list[MetricRecord]:
    """Estimate out-of-sample metrics of one hyperparameter combination.

    For each fold, the family is fitted on every other fold and assessed on
    the held-out one.

    Parameters
    ----------
    train : pd.DataFrame
        training records
    folds : FoldAssignment
        fold of every training record
    model_family : ModelFamily
        family fitted on each fold's complement
    hyperparams : dict[str, Any]
        combination passed to the family
    formula : Formula
        target and predictor field names
    n_jobs : int, optional
        workers fitting folds concurrently, by default 1

    Returns
    -------
    list[MetricRecord]
        one record per fold, failed folds marked with their error

    Raises
    ------
    InsufficientDataError
        When a fold's complement is empty or a formula field is missing.
    """
    _check_training_data(train, folds, formula)
    return _run_units(train, folds, model_family, [hyperparams], formula, n_jobs)


def tune_grid(
    train: pd.DataFrame,
    folds: FoldAssignment,
    model_family: ModelFamily,
    hyperparam_grid: list[dict[str, Any]],
    formula: Formula,
    n_jobs: int = 1,
    show_progress: bool = False,
) -> list[MetricRecord]:
    """Cross-validate every combination of a hyperparameter grid.

    Combinations are independent of each other, so the (combination, fold)
    units run on `n_jobs` workers. Records come back in grid order, then fold
    order, each tagged with its combination.

    Raises
    ------
    InvalidConfigurationError
        When the grid is empty.
    InsufficientDataError
        When a fold's complement is empty or a formula field is missing.
    """
    check_grid(hyperparam_grid)
    _check_training_data(train, folds, formula)
    logger.info(
        f"Tuning {model_family.name} over {len(hyperparam_grid)} combinations "
        f"and {folds.v} folds"
    )
    records = _run_units(
        train, folds, model_family, hyperparam_grid, formula, n_jobs, show_progress
    )
    failures = sum(record.failed for record in records)
    if failures:
        logger.warning(f"{failures} of {len(records)} fits of {model_family.name} failed")
    return records


def _metric_order(metric: str) -> int:
    return METRIC_NAMES.index(metric) if metric in METRIC_NAMES else len(METRIC_NAMES)


def aggregate(grid_metric_records: list[MetricRecord]) -> pd.DataFrame:
    """Summarize metric records per (combination, metric).

    Failed records are left out. Standard errors are the fold standard
    deviation over the square root of the number of folds.

    Returns
    -------
    pd.DataFrame
        columns config, config_index, params, metric, mean, n, std_err,
        ordered by grid position then metric
    """
    rows = [
        {
            "config_index": record.config_index,
            "metric": metric,
            "value": value,
        }
        for record in grid_metric_records
        if not record.failed
        for metric, value in record.metrics.items()
    ]
    if not rows:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    grouped = (
        pd.DataFrame(rows)
        .groupby(["config_index", "metric"], sort=False)["value"]
        .agg(mean="mean", n="count", std="std")
        .reset_index()
    )
    grouped["std_err"] = grouped["std"] / np.sqrt(grouped["n"])

    combinations = {}
    for record in grid_metric_records:
        combinations.setdefault(record.config_index, (record.config, record.params))
    grouped["config"] = grouped["config_index"].map(lambda i: combinations[i][0])
    grouped["params"] = grouped["config_index"].map(lambda i: combinations[i][1])
    grouped["metric_order"] = grouped["metric"].map(_metric_order)

    summary = grouped.sort_values(
        ["config_index", "metric_order", "metric"], kind="stable"
    ).reset_index(drop=True)
    return summary.loc[:, SUMMARY_COLUMNS]


def show_best(
    summary: pd.DataFrame,
    metric_name: str,
    direction: str | None = None,
    n: int = 5,
) -> pd.DataFrame:
    """Rank the summary rows of one metric, best first.

    Ties keep grid order. Combinations without a finite mean are dropped.
    """
    direction = resolve_direction(metric_name, direction)
    rows = summary[(summary["metric"] == metric_name) & summary["mean"].notna()]
    return rows.sort_values(
        ["mean", "config_index"],
        ascending=[direction != MAXIMIZE, True],
        kind="stable",
    ).head(n)


def select_best(
    summary: pd.DataFrame, metric_name: str, direction: str | None = None
) -> dict[str, Any]:
    """Return the combination with the best mean for a metric.

    Parameters
    ----------
    summary : pd.DataFrame
        output of `aggregate`
    metric_name : str
        metric to rank on, e.g. "rmse"
    direction : str | None, optional
        "minimize" or "maximize", by default derived from the metric

    Returns
    -------
    dict[str, Any]
        the winning combination; ties resolve to the earliest grid entry

    Raises
    ------
    EmptySummaryError
        When the summary holds no usable row for the metric.
    """
    direction = resolve_direction(metric_name, direction)
    if summary.empty:
        raise EmptySummaryError("Cannot select a combination from an empty summary")
    ranked = show_best(summary, metric_name, direction, n=1)
    if ranked.empty:
        raise EmptySummaryError(f"Summary holds no {metric_name!r} value")
    return dict(ranked.iloc[0]["params"])


def final_fit(
    split: Split,
    model_family: ModelFamily,
    hyperparams: dict[str, Any],
    formula: Formula,
) -> dict[str, float]:
    """Fit on the whole training set and assess on the testing set.

    Raises
    ------
    ModelFitError
        When the family fails to fit on the training set or to predict
        the testing set.
    """
    for name, subset in (("training", split.train), ("testing", split.test)):
        missing = [column for column in formula.columns if column not in subset.columns]
        if missing:
            raise InsufficientDataError(f"{name} records lack formula fields: {missing}")
    try:
        estimate = model_family.fit(split.train, hyperparams, formula).predict(split.test)
    except ModelFitError as e:
        e.params = dict(hyperparams)
        raise
    return regression_metrics(split.test[formula.target], estimate)


@dataclass
class ModelComparison:
    """Results of evaluating several families on the same folds.

    Attributes:
        table (pd.DataFrame): one row per family with CV and test metrics
        summaries (dict[str, pd.DataFrame]): aggregated CV metrics per family
        best_params (dict[str, dict]): selected combination per family
    """

    table: pd.DataFrame
    summaries: dict[str, pd.DataFrame] = field(default_factory=dict)
    best_params: dict[str, dict[str, Any]] = field(default_factory=dict)


def compare_models(
    split: Split,
    families: dict[str, ModelFamily],
    grids: dict[str, list[dict[str, Any]]],
    formula: Formula,
    v: int,
    seed: int,
    metric_name: str = "rmse",
    direction: str | None = None,
    n_jobs: int = 1,
    show_progress: bool = False,
) -> ModelComparison:
    """Tune every family on one fold assignment and assess each winner.

    A family whose every fit failed is reported with its error instead of
    stopping the comparison.
    """
    direction = resolve_direction(metric_name, direction)
    for name in families:
        check_grid(grids.get(name, [{}]))
    folds = make_folds(split.train, v, seed=seed)

    comparison = ModelComparison(table=pd.DataFrame())
    rows = []
    for name, family in families.items():
        records = tune_grid(
            split.train,
            folds,
            family,
            grids.get(name, [{}]),
            formula,
            n_jobs=n_jobs,
            show_progress=show_progress,
        )
        summary = aggregate(records)
        comparison.summaries[name] = summary
        row = {"family": name}
        try:
            best = select_best(summary, metric_name, direction)
            test_metrics = final_fit(split, family, best, formula)
        except (EmptySummaryError, ModelFitError) as e:
            logger.error(f"No usable configuration for {name}: {e}")
            rows.append({**row, "error": str(e)})
            continue

        comparison.best_params[name] = best
        cv_row = show_best(summary, metric_name, direction, n=1).iloc[0]
        rows.append(
            {
                **row,
                "params": best,
                "cv_mean": cv_row["mean"],
                "cv_std_err": cv_row["std_err"],
                **{f"test_{metric}": value for metric, value in test_metrics.items()},
                "error": None,
            }
        )
        logger.info(f"Best {name} combination on {metric_name}: {best}")

    comparison.table = pd.DataFrame(rows)
    return comparison
