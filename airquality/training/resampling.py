from dataclasses import dataclass
from logging import getLogger
from math import floor

import numpy as np
import pandas as pd
from sklearn.model_selection import KFold, train_test_split

from airquality.data.utils import DEFAULT_TRAIN_FRACTION
from airquality.exceptions import InsufficientDataError, InvalidConfigurationError

logger = getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Split:
    """Training and testing subsets of one dataset."""

    train: pd.DataFrame
    test: pd.DataFrame


@dataclass(frozen=True, eq=False)
class FoldAssignment:
    """Fold id of every training record, by position.

    Attributes:
        fold_ids (np.ndarray): fold id in `0..v-1` of each training row
        v (int): number of folds
    """

    fold_ids: np.ndarray
    v: int

    def __post_init__(self):
        self.fold_ids.setflags(write=False)

    def __len__(self):
        return len(self.fold_ids)

    def fold_sizes(self) -> list[int]:
        return np.bincount(self.fold_ids, minlength=self.v).tolist()

    def assessment(self, fold: int) -> np.ndarray:
        """Positions of the records held out when `fold` is validated."""
        return np.flatnonzero(self.fold_ids == fold)

    def analysis(self, fold: int) -> np.ndarray:
        """Positions of the records a model is trained on when `fold` is held out."""
        return np.flatnonzero(self.fold_ids != fold)


def split(
    dataset: pd.DataFrame,
    train_fraction: float = DEFAULT_TRAIN_FRACTION,
    *,
    seed: int,
) -> Split:
    """Randomly partition a dataset into training and testing subsets.

    Parameters
    ----------
    dataset : pd.DataFrame
        complete records
    train_fraction : float, optional
        share of records assigned to training, by default 0.75
    seed : int
        seed of the shuffle

    Returns
    -------
    Split
        disjoint training and testing subsets covering the dataset, keeping
        the original index of every record

    Raises
    ------
    InvalidConfigurationError
        When `train_fraction` is not strictly between 0 and 1.
    InsufficientDataError
        When either subset would be empty.
    """
    if not 0 < train_fraction < 1:
        raise InvalidConfigurationError(
            f"train_fraction must be in (0, 1), got {train_fraction}"
        )
    n_train = floor(train_fraction * len(dataset))
    n_test = len(dataset) - n_train
    if n_train == 0 or n_test == 0:
        raise InsufficientDataError(
            f"Splitting {len(dataset)} records at {train_fraction} leaves "
            f"{n_train} training and {n_test} testing records"
        )

    train, test = train_test_split(
        dataset, train_size=n_train, test_size=n_test, random_state=seed, shuffle=True
    )
    logger.info(f"Split {len(dataset)} records into {n_train} training and {n_test} testing")
    return Split(train=train, test=test)


def make_folds(train: pd.DataFrame, v: int, *, seed: int) -> FoldAssignment:
    """Randomly assign every training record to one of `v` folds.

    Fold sizes differ by at most one record.

    Raises
    ------
    InvalidConfigurationError
        When `v` is below 2 or above the number of training records.
    """
    if not 2 <= v <= len(train):
        raise InvalidConfigurationError(
            f"Fold count must be between 2 and {len(train)}, got {v}"
        )
    fold_ids = np.empty(len(train), dtype=int)
    cv = KFold(n_splits=v, shuffle=True, random_state=seed)
    for fold, (_, assessment) in enumerate(cv.split(np.zeros((len(train), 1)))):
        fold_ids[assessment] = fold
    return FoldAssignment(fold_ids=fold_ids, v=v)
