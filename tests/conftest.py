import json

import numpy as np
import pandas as pd
import pytest

from airquality.training.models import Formula

N_RECORDS = 100


def make_pm25_frame(n_records: int = N_RECORDS, seed: int = 0) -> pd.DataFrame:
    """Synthetic monitor records where PM2.5 is close to linear in the predictors."""
    rng = np.random.default_rng(seed)
    frame = pd.DataFrame(
        {
            "id": np.arange(n_records),
            "state": rng.choice(["California", "Texas", "Ohio"], size=n_records),
            "CMAQ": rng.uniform(2, 15, size=n_records),
            "aod": rng.uniform(10, 80, size=n_records),
            "pov": rng.uniform(0, 0.4, size=n_records),
        }
    )
    frame["value"] = (
        1
        + 0.8 * frame["CMAQ"]
        + 0.02 * frame["aod"]
        + 5 * frame["pov"]
        + rng.normal(0, 0.3, size=n_records)
    )
    return frame


@pytest.fixture
def formula():
    return Formula(target="value", predictors=["CMAQ", "aod", "pov"])


@pytest.fixture
def dataset(formula):
    return make_pm25_frame().loc[:, formula.columns]


@pytest.fixture
def dataset_files(tmp_path):
    """CSV dataset with a few incomplete records, and its schema."""
    frame = make_pm25_frame()
    frame.loc[[3, 17], "aod"] = np.nan
    frame.loc[40, "value"] = np.nan
    data_path = tmp_path / "pm25_data.csv"
    schema_path = tmp_path / "dataset_schema.json"
    frame.to_csv(data_path, index=False)
    schema_path.write_text(
        json.dumps({"target": "value", "predictors": ["CMAQ", "aod", "pov"]})
    )
    return data_path, schema_path
