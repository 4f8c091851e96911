import json
from logging import getLogger
from pathlib import Path

import pandas as pd

from airquality.data.utils import DEFAULT_DATA_PATH, DEFAULT_SCHEMA_PATH
from airquality.exceptions import InsufficientDataError
from airquality.training.models import Formula

logger = getLogger(__name__)


def project_formula(frame: pd.DataFrame, formula: Formula) -> pd.DataFrame:
    """Keep the formula columns and drop incomplete records.

    Parameters
    ----------
    frame : pd.DataFrame
        raw records, one row per monitor
    formula : Formula
        target and predictor field names

    Returns
    -------
    pd.DataFrame
        records restricted to the formula fields, in their original order,
        with every record lacking a formula field value excluded

    Raises
    ------
    InsufficientDataError
        When a formula field is not a column of the frame.
    """
    missing = [column for column in formula.columns if column not in frame.columns]
    if missing:
        raise InsufficientDataError(f"Dataset is missing formula fields: {missing}")

    projected = frame.loc[:, formula.columns]
    complete = projected.dropna()
    dropped = len(projected) - len(complete)
    if dropped:
        logger.info(f"Excluded {dropped} incomplete records out of {len(projected)}")
    return complete.reset_index(drop=True)


class CustomDataLoader:
    """Data loader for the monitor-level PM2.5 dataset.

    If no paths are provided, it defaults to loading from the `data` directory.

    Attributes:
        data_path (Path): Path to the CSV data file
        schema_path (Path): Path to the JSON schema file

    Methods:
        formula(): Returns the default formula described by the schema
        load_dataset(): Loads complete records for a formula
    """

    def __init__(
        self,
        data_path: Path = DEFAULT_DATA_PATH,
        schema_path: Path = DEFAULT_SCHEMA_PATH,
    ):
        self.data_path = Path(data_path)
        self.schema_path = Path(schema_path)
        self.df = pd.read_csv(self.data_path)
        self.dataset_scheme = json.load(self.schema_path.open())
        logger.info(f"Loaded {len(self.df)} records from {self.data_path}")

    def formula(self) -> Formula:
        return Formula(
            target=self.dataset_scheme["target"],
            predictors=self.dataset_scheme["predictors"],
        )

    def load_dataset(self, formula: Formula | None = None) -> pd.DataFrame:
        """Load the complete records for a formula.

        Parameters
        ----------
        formula : Formula | None, optional
            fields to keep, by default the schema's formula

        Returns
        -------
        pd.DataFrame
            the dataset the evaluation workflow consumes
        """
        return project_formula(self.df, formula or self.formula())
