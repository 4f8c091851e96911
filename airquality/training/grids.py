from typing import Any, Mapping

from sklearn.model_selection import ParameterGrid

from airquality.data.utils import CONFIG_NAME_TEMPLATE
from airquality.exceptions import InvalidConfigurationError


def expand_grid(values: Mapping[str, list[Any]]) -> list[dict[str, Any]]:
    """Build the regular grid of every combination of hyperparameter values.

    A family without tunable hyperparameters gets the single empty
    combination, so it is still cross-validated once.

    Parameters
    ----------
    values : Mapping[str, list[Any]]
        candidate values per hyperparameter name

    Returns
    -------
    list[dict[str, Any]]
        combinations in a deterministic order

    Raises
    ------
    InvalidConfigurationError
        When a hyperparameter has no candidate value, or its candidates
        are not a list.
    """
    scalars = [
        name
        for name, candidates in values.items()
        if not isinstance(candidates, (list, tuple))
    ]
    if scalars:
        raise InvalidConfigurationError(f"Candidate values of {scalars} must be given as lists")
    empty = [name for name, candidates in values.items() if len(candidates) == 0]
    if empty:
        raise InvalidConfigurationError(f"No candidate values for {empty}")
    return list(ParameterGrid(dict(values)))


def config_name(index: int) -> str:
    return CONFIG_NAME_TEMPLATE.format(index=index + 1)


def check_grid(grid: list[dict[str, Any]]) -> None:
    """Reject grids that cannot be evaluated.

    Raises
    ------
    InvalidConfigurationError
        When the grid is empty, or a combination is not a mapping.
    """
    if len(grid) == 0:
        raise InvalidConfigurationError("Hyperparameter grid is empty")
    for combination in grid:
        if not isinstance(combination, Mapping):
            raise InvalidConfigurationError(
                f"Grid entries must map names to values, got {combination!r}"
            )
