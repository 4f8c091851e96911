from pathlib import Path

DATA_PATH = Path(__file__).parent
DEFAULT_DATA_PATH = Path(f"{DATA_PATH}/pm25_data.csv")
DEFAULT_SCHEMA_PATH = Path(f"{DATA_PATH}/dataset_schema.json")
SETTINGS_PATH = Path(__file__).parent.parent / "model_settings"
DEFAULT_SETTINGS_PATH = SETTINGS_PATH / "default_settings.json"

DEFAULT_TARGET = "value"
DEFAULT_PREDICTORS = ["CMAQ", "aod", "pov"]

DEFAULT_TRAIN_FRACTION = 0.75
DEFAULT_FOLDS = 10
RANDOM_STATE = 42

METRIC_NAMES = ["rmse", "rsq", "mae"]
MINIMIZE = "minimize"
MAXIMIZE = "maximize"
DIRECTIONS = [MINIMIZE, MAXIMIZE]
DEFAULT_DIRECTIONS = {
    "rmse": MINIMIZE,
    "rsq": MAXIMIZE,
    "mae": MINIMIZE,
}

CONFIG_NAME_TEMPLATE = "Model{index:02d}"
