import json
from unittest.mock import MagicMock

from airquality.training.main import main
from airquality.training.models import ModelFamily


def run_args(dataset_files, *extra):
    data_path, schema_path = dataset_files
    return [
        "--data_path",
        str(data_path),
        "--schema_path",
        str(schema_path),
        "--no_progress",
        *extra,
    ]


def test_main_single_family(dataset_files, capsys):
    """Tests the command line on one family with an explicit grid."""
    # Act
    exit_code = main(
        run_args(
            dataset_files,
            "--model",
            "knn",
            "--grid",
            json.dumps({"n_neighbors": [3, 5, 10]}),
            "--folds",
            "5",
            "--seed",
            "1",
        )
    )

    # Assert
    assert exit_code == 0
    output = capsys.readouterr().out
    assert "== knn (value ~ CMAQ + aod + pov) ==" in output
    assert "Model03" in output
    assert "== comparison ==" in output


def test_main_all_families(dataset_files, tmp_path, capsys):
    """Tests the command line over every family of a settings file."""
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(
        json.dumps(
            {
                "folds": 3,
                "families": {
                    "linear_regression": {},
                    "decision_tree": {"grid": {"max_depth": [2, 3]}},
                },
            }
        )
    )

    exit_code = main(
        run_args(dataset_files, "--settings_json_path", str(settings_path), "--n_jobs", "2")
    )

    assert exit_code == 0
    output = capsys.readouterr().out
    assert "linear_regression" in output
    assert "decision_tree" in output


def test_main_rejects_single_fold(dataset_files):
    assert main(run_args(dataset_files, "--model", "linear_regression", "--folds", "1")) == 1


def test_main_rejects_unknown_predictor(dataset_files):
    assert main(run_args(dataset_files, "--predictors", "CMAQ", "no2")) == 1


def test_main_missing_dataset(tmp_path):
    exit_code = main(
        ["--data_path", str(tmp_path / "missing.csv"), "--model", "knn", "--no_progress"]
    )

    assert exit_code == 1


def test_main_rejects_scalar_grid_value(dataset_files):
    """Tests that a grid value given without a list is a configuration error."""
    exit_code = main(
        run_args(dataset_files, "--model", "knn", "--grid", json.dumps({"n_neighbors": 5}))
    )

    assert exit_code == 1


def test_main_rejects_unknown_metric(dataset_files, monkeypatch):
    """Tests that an unknown metric fails before any fold is evaluated."""
    fit = MagicMock()
    monkeypatch.setattr(ModelFamily, "fit", fit)

    exit_code = main(
        run_args(dataset_files, "--model", "knn", "--metric", "mape", "--direction", "minimize")
    )

    assert exit_code == 1
    fit.assert_not_called()


def test_main_fails_without_usable_family(dataset_files, capsys):
    """Tests the exit code when every combination of every family fails."""
    exit_code = main(
        run_args(
            dataset_files,
            "--model",
            "knn",
            "--grid",
            json.dumps({"n_neighbors": [-1]}),
            "--folds",
            "3",
        )
    )

    assert exit_code == 1
    assert "== comparison ==" in capsys.readouterr().out
