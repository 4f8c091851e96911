import hashlib

import mlflow
import pandas as pd

from airquality.training.evaluation import ModelComparison
from airquality.training.models import Formula
from airquality.training.resampling import Split


def log_data_version(split: Split, formula: Formula, random_state: int):
    """Log data versioning information.

    Parameters
    ----------
    split : Split
        training and testing records
    formula : Formula
        fields the models are fitted on
    random_state : int
        seed of the split and fold assignment
    """
    data_hash = hashlib.md5(
        pd.util.hash_pandas_object(split.train, index=True).values
    ).hexdigest()
    mlflow.log_param("data_version", data_hash)
    mlflow.log_param("n_train_samples", len(split.train))
    mlflow.log_param("n_test_samples", len(split.test))
    mlflow.log_param("formula", str(formula))
    mlflow.log_param("random_state", random_state)


def log_summary_metrics(summary: pd.DataFrame, best_params: dict, test_metrics: dict):
    """Log the cross-validated metrics of the selected combination.

    Parameters
    ----------
    summary : pd.DataFrame
        aggregated CV metrics of one family
    best_params : dict
        combination selected for the family
    test_metrics : dict
        metrics of the final fit on the testing set
    """
    best_rows = summary[summary["params"].map(lambda params: params == best_params)]
    for _, row in best_rows.iterrows():
        mlflow.log_metric(f"cv_mean_{row['metric']}", row["mean"])
        if pd.notna(row["std_err"]):
            mlflow.log_metric(f"cv_std_err_{row['metric']}", row["std_err"])
    for metric, value in test_metrics.items():
        mlflow.log_metric(f"test_{metric}", value)
    mlflow.log_params({f"param_{name}": value for name, value in best_params.items()})


def log_comparison(
    comparison: ModelComparison,
    split: Split,
    formula: Formula,
    random_state: int,
    experiment_name: str,
    tags: dict | None = None,
):
    """Log one MLflow run per evaluated model family.

    Families without a usable configuration are logged with their error as a tag.
    """
    mlflow.set_experiment(experiment_name)
    for _, row in comparison.table.iterrows():
        family = row["family"]
        with mlflow.start_run(run_name=family, tags={"family": family, **(tags or {})}):
            log_data_version(split, formula, random_state)
            if family not in comparison.best_params:
                mlflow.set_tag("error", row["error"])
                continue
            test_metrics = {
                column.removeprefix("test_"): row[column]
                for column in comparison.table.columns
                if column.startswith("test_")
            }
            log_summary_metrics(
                comparison.summaries[family], comparison.best_params[family], test_metrics
            )
