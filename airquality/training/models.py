import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from sklearn.ensemble import RandomForestRegressor
from sklearn.linear_model import LinearRegression
from sklearn.neighbors import KNeighborsRegressor
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.tree import DecisionTreeRegressor

from airquality.data.utils import (
    DEFAULT_FOLDS,
    DEFAULT_PREDICTORS,
    DEFAULT_TARGET,
    DEFAULT_TRAIN_FRACTION,
    RANDOM_STATE,
)
from airquality.exceptions import InvalidConfigurationError, ModelFitError

# Errors scikit-learn raises for bad hyperparameters or degenerate training data.
FIT_ERRORS = (ValueError, TypeError, ArithmeticError)


class Formula(BaseModel):
    """Target field and the predictor fields a model is fitted on."""

    model_config = ConfigDict(frozen=True)
    target: str = DEFAULT_TARGET
    predictors: list[str] = Field(default_factory=lambda: list(DEFAULT_PREDICTORS))

    @model_validator(mode="after")
    def check_fields(self):
        if not self.predictors:
            raise ValueError("formula needs at least one predictor")
        if self.target in self.predictors:
            raise ValueError(f"target {self.target!r} cannot also be a predictor")
        if len(set(self.predictors)) != len(self.predictors):
            raise ValueError(f"duplicated predictors in {self.predictors}")
        return self

    @property
    def columns(self) -> list[str]:
        return [*self.predictors, self.target]

    def __str__(self):
        return f"{self.target} ~ {' + '.join(self.predictors)}"


class FamilySettings(BaseModel):
    grid: dict[str, list[Any]] = Field(default_factory=dict)
    fixed_params: dict[str, Any] = Field(default_factory=dict)


class EvaluationSettings(BaseModel):
    """Parameters of one evaluation session.

    Loaded from a JSON file in `model_settings`, given as such:
        formula : Formula
            target and predictor field names
        train_fraction : float
            share of records used for training, by default 0.75
        folds : int
            number of cross-validation folds, by default 10
        random_seed : int
            seed of the split and of the fold assignment, by default 42
        metric : str
            metric the best combination is selected on, by default "rmse"
        direction : str | None
            "minimize" or "maximize", by default derived from the metric
        n_jobs : int
            workers evaluating (combination, fold) units, by default 1
        experiment_name : str
            MLflow experiment used when tracking is enabled
        families : dict[str, FamilySettings]
            grids and fixed parameters per model family
    """

    formula: Formula = Field(default_factory=Formula)
    train_fraction: float = DEFAULT_TRAIN_FRACTION
    folds: int = DEFAULT_FOLDS
    random_seed: int = RANDOM_STATE
    metric: str = "rmse"
    direction: str | None = None
    n_jobs: int = 1
    experiment_name: str = "PM2.5 model comparison"
    families: dict[str, FamilySettings] = Field(default_factory=dict)


def load_settings(settings_path: Path) -> EvaluationSettings:
    """Load evaluation settings from a JSON file.

    Raises
    ------
    InvalidConfigurationError
        When the file does not describe valid settings.
    """
    try:
        parameters = json.load(Path(settings_path).open())
        return EvaluationSettings(**parameters)
    except (ValidationError, json.JSONDecodeError) as e:
        raise InvalidConfigurationError(
            f"Invalid settings in {settings_path}: {e}"
        ) from e


class FittedModel:
    """Model fitted on one set of training records.

    Only exposes predictions, whatever the underlying family is.
    """

    def __init__(self, pipeline: Pipeline, formula: Formula, name: str = "model"):
        self.pipeline = pipeline
        self.formula = formula
        self.name = name

    def predict(self, records: pd.DataFrame) -> np.ndarray:
        """Predict the target of every record.

        Raises
        ------
        ModelFitError
            When the fitted estimator cannot predict these records.
        """
        try:
            estimate = self.pipeline.predict(records.loc[:, self.formula.predictors])
        except FIT_ERRORS as e:
            raise ModelFitError(f"{self.name} failed to predict: {e}") from e
        return np.asarray(estimate)


class ModelFamily(ABC):
    """A family of regression models sharing one fitting procedure.

    Concrete families only describe which estimator to build for a
    hyperparameter combination; fitting and error wrapping are shared.
    """

    name: str = "model"

    def __init__(self, **fixed_params):
        self.fixed_params = fixed_params

    @abstractmethod
    def build(self, hyperparams: dict[str, Any]) -> Pipeline:
        """Build an unfitted pipeline for a hyperparameter combination."""

    def fit(
        self, records: pd.DataFrame, hyperparams: dict[str, Any], formula: Formula
    ) -> FittedModel:
        """Fit the family on training records.

        Parameters
        ----------
        records : pd.DataFrame
            training records holding every formula field
        hyperparams : dict[str, Any]
            hyperparameter combination, keyed by estimator parameter name
        formula : Formula
            target and predictor field names

        Returns
        -------
        FittedModel
            the fitted model

        Raises
        ------
        ModelFitError
            When the estimator rejects the combination or fails on the data.
        """
        try:
            pipeline = self.build(hyperparams)
            pipeline.fit(records.loc[:, formula.predictors], records[formula.target])
        except FIT_ERRORS as e:
            raise ModelFitError(f"{self.name} failed to fit: {e}", params=hyperparams) from e
        return FittedModel(pipeline, formula, self.name)

    def __repr__(self):
        return f"{type(self).__name__}({self.fixed_params})"


class SklearnModelFamily(ModelFamily):
    """Family backed by a scikit-learn regressor, optionally behind a scaler."""

    estimator_class: type = LinearRegression
    scale: bool = False

    def build(self, hyperparams: dict[str, Any]) -> Pipeline:
        estimator = self.estimator_class(**{**self.fixed_params, **hyperparams})
        steps = [("scaler", StandardScaler())] if self.scale else []
        steps.append(("model", estimator))
        return Pipeline(steps=steps)


class LinearRegressionFamily(SklearnModelFamily):
    name = "linear_regression"
    estimator_class = LinearRegression


class KNearestNeighborsFamily(SklearnModelFamily):
    # distances are only meaningful on standardized predictors
    name = "knn"
    estimator_class = KNeighborsRegressor
    scale = True


class RandomForestFamily(SklearnModelFamily):
    name = "random_forest"
    estimator_class = RandomForestRegressor

    def __init__(self, **fixed_params):
        fixed_params.setdefault("random_state", RANDOM_STATE)
        super().__init__(**fixed_params)


class DecisionTreeFamily(SklearnModelFamily):
    name = "decision_tree"
    estimator_class = DecisionTreeRegressor

    def __init__(self, **fixed_params):
        fixed_params.setdefault("random_state", RANDOM_STATE)
        super().__init__(**fixed_params)


MODEL_FAMILIES: dict[str, type[ModelFamily]] = {
    family.name: family
    for family in (
        LinearRegressionFamily,
        KNearestNeighborsFamily,
        RandomForestFamily,
        DecisionTreeFamily,
    )
}


def get_model_family(name: str, **fixed_params) -> ModelFamily:
    """Instantiate a registered model family by identifier.

    Raises
    ------
    InvalidConfigurationError
        When no family is registered under `name`.
    """
    if name not in MODEL_FAMILIES:
        raise InvalidConfigurationError(
            f"Unknown model family {name!r}, expected one of {sorted(MODEL_FAMILIES)}"
        )
    return MODEL_FAMILIES[name](**fixed_params)
