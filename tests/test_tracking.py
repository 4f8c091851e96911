import tempfile
from pathlib import Path

import mlflow
import pytest

from airquality.training.evaluation import compare_models
from airquality.training.models import DecisionTreeFamily, LinearRegressionFamily
from airquality.training.resampling import split
from airquality.training.tracking import log_comparison


@pytest.fixture(autouse=True)
def tracking_uri():
    with tempfile.TemporaryDirectory() as temp_dir:
        mlflow.set_tracking_uri(f"sqlite:///{Path(temp_dir).absolute() / 'mlflow.db'}")
        yield
        mlflow.end_run()


def test_log_comparison(dataset, formula):
    """Tests comparison logging.

    Ensures one MLflow run per family with CV and test metrics, and the
    selected hyperparameters.
    """
    # Arrange
    data_split = split(dataset, seed=42)
    comparison = compare_models(
        data_split,
        {"linear_regression": LinearRegressionFamily(), "decision_tree": DecisionTreeFamily()},
        {"decision_tree": [{"max_depth": 2}, {"max_depth": 4}]},
        formula,
        v=3,
        seed=1,
    )

    # Act
    log_comparison(comparison, data_split, formula, 42, "ci-test-exp")

    # Assert
    runs = mlflow.search_runs(experiment_names=["ci-test-exp"])
    assert len(runs) == 2
    assert set(runs["tags.family"]) == {"linear_regression", "decision_tree"}
    assert runs["metrics.cv_mean_rmse"].notna().all()
    assert runs["metrics.test_rsq"].notna().all()
    tree_run = runs[runs["tags.family"] == "decision_tree"].iloc[0]
    assert tree_run["params.param_max_depth"] in {"2", "4"}


def test_log_comparison_with_failed_family(dataset, formula):
    """Tests that a family without usable configuration is logged with its error."""
    data_split = split(dataset, seed=42)
    comparison = compare_models(
        data_split,
        {"decision_tree": DecisionTreeFamily()},
        {"decision_tree": [{"max_depth": -3}]},
        formula,
        v=3,
        seed=1,
    )

    log_comparison(comparison, data_split, formula, 42, "ci-test-failures")

    runs = mlflow.search_runs(experiment_names=["ci-test-failures"])
    assert len(runs) == 1
    assert runs["tags.error"].iloc[0]
