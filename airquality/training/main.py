import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from airquality.data.dataloader import CustomDataLoader
from airquality.data.utils import (
    DEFAULT_DATA_PATH,
    DEFAULT_SCHEMA_PATH,
    DEFAULT_SETTINGS_PATH,
    DIRECTIONS,
    SETTINGS_PATH,
)
from airquality.exceptions import EvaluationError, InvalidConfigurationError
from airquality.training.evaluation import compare_models, resolve_direction, show_best
from airquality.training.grids import expand_grid
from airquality.training.models import (
    MODEL_FAMILIES,
    EvaluationSettings,
    FamilySettings,
    Formula,
    get_model_family,
    load_settings,
)
from airquality.training.resampling import split
from airquality.training.tracking import log_comparison

logger = logging.getLogger(__name__)

parser = argparse.ArgumentParser(
    description="Compare PM2.5 regression models with cross-validated grid search"
)
parser.add_argument(
    "--settings_json_path",
    type=str,
    default=DEFAULT_SETTINGS_PATH.name,
    help="Settings JSON file name in model_settings, or a path (default: default_settings.json)",
)
parser.add_argument("--data_path", type=Path, default=DEFAULT_DATA_PATH, help="Dataset CSV")
parser.add_argument(
    "--schema_path", type=Path, default=DEFAULT_SCHEMA_PATH, help="Dataset schema JSON"
)
parser.add_argument("--target", type=str, help="Target field name")
parser.add_argument("--predictors", type=str, nargs="+", help="Predictor field names")
parser.add_argument(
    "--model",
    type=str,
    default="all",
    choices=["all", *MODEL_FAMILIES],
    help="Model family to evaluate (default: all families in the settings)",
)
parser.add_argument(
    "--grid",
    type=str,
    help="JSON grid for --model: a mapping of candidate lists, or a list of combinations",
)
parser.add_argument("--folds", type=int, help="Number of cross-validation folds")
parser.add_argument("--seed", type=int, help="Random seed of the split and folds")
parser.add_argument("--train_fraction", type=float, help="Share of records used for training")
parser.add_argument("--metric", type=str, help="Metric the best combination is selected on")
parser.add_argument("--direction", type=str, choices=DIRECTIONS, help="Selection direction")
parser.add_argument("--n_jobs", type=int, help="Workers evaluating folds concurrently")
parser.add_argument("--track", action="store_true", help="Log runs to MLflow")
parser.add_argument("--experiment_name", type=str, help="MLflow experiment name")
parser.add_argument("--no_progress", action="store_true", help="Hide progress bars")


def resolve_settings(args: argparse.Namespace) -> EvaluationSettings:
    """Merge command line overrides into the settings file."""
    settings_path = Path(args.settings_json_path)
    if not settings_path.exists():
        settings_path = SETTINGS_PATH / args.settings_json_path
    settings = load_settings(settings_path)

    overrides = {
        "train_fraction": args.train_fraction,
        "folds": args.folds,
        "random_seed": args.seed,
        "metric": args.metric,
        "direction": args.direction,
        "n_jobs": args.n_jobs,
        "experiment_name": args.experiment_name,
    }
    parameters = settings.model_dump()
    parameters.update({key: value for key, value in overrides.items() if value is not None})
    if args.target or args.predictors:
        parameters["formula"] = {
            "target": args.target or settings.formula.target,
            "predictors": args.predictors or settings.formula.predictors,
        }
    try:
        settings = EvaluationSettings(**parameters)
    except ValidationError as e:
        raise InvalidConfigurationError(f"Invalid command line settings: {e}") from e
    resolve_direction(settings.metric, settings.direction)
    return settings


def parse_grid(grid: str) -> list[dict]:
    try:
        parsed = json.loads(grid)
    except json.JSONDecodeError as e:
        raise InvalidConfigurationError(f"--grid is not valid JSON: {e}") from e
    if isinstance(parsed, dict):
        return expand_grid(parsed)
    if isinstance(parsed, list):
        return parsed
    raise InvalidConfigurationError("--grid must be a JSON object or list")


def build_families(args: argparse.Namespace, settings: EvaluationSettings):
    names = list(settings.families) if args.model == "all" else [args.model]
    if not names:
        raise InvalidConfigurationError("No model family to evaluate")
    families, grids = {}, {}
    for name in names:
        family_settings = settings.families.get(name, FamilySettings())
        families[name] = get_model_family(name, **family_settings.fixed_params)
        grids[name] = expand_grid(family_settings.grid)
    if args.grid:
        if args.model == "all":
            raise InvalidConfigurationError("--grid needs a single --model")
        grids[args.model] = parse_grid(args.grid)
    return families, grids


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO)
    args = parser.parse_args(argv)

    try:
        settings = resolve_settings(args)
        families, grids = build_families(args, settings)
        formula: Formula = settings.formula

        # load data
        dataset = CustomDataLoader(args.data_path, args.schema_path).load_dataset(formula)
        data_split = split(dataset, settings.train_fraction, seed=settings.random_seed)

        # tune, select and assess every family
        comparison = compare_models(
            data_split,
            families,
            grids,
            formula,
            v=settings.folds,
            seed=settings.random_seed,
            metric_name=settings.metric,
            direction=settings.direction,
            n_jobs=settings.n_jobs,
            show_progress=not args.no_progress,
        )
    except (EvaluationError, OSError) as e:
        logger.error(f"Evaluation failed: {e}")
        return 1

    for name, summary in comparison.summaries.items():
        print(f"\n== {name} ({formula}) ==")
        print(summary.to_string(index=False))
        print(f"\nBest {name} combinations on {settings.metric}:")
        print(show_best(summary, settings.metric, settings.direction).to_string(index=False))
    print("\n== comparison ==")
    print(comparison.table.to_string(index=False))

    if args.track:
        log_comparison(
            comparison,
            data_split,
            formula,
            settings.random_seed,
            settings.experiment_name,
        )
    if not comparison.best_params:
        logger.error("No model family produced a usable configuration")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
