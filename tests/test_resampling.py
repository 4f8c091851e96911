import numpy as np
import pytest

from airquality.exceptions import InsufficientDataError, InvalidConfigurationError
from airquality.training.resampling import FoldAssignment, make_folds, split


def test_split_sizes(dataset):
    """Tests train/test split sizes.

    100 records at 0.75 give 75 training and 25 testing records with no overlap.
    """
    # Act
    data_split = split(dataset, train_fraction=0.75, seed=42)

    # Assert
    assert len(data_split.train) == 75
    assert len(data_split.test) == 25
    train_index, test_index = set(data_split.train.index), set(data_split.test.index)
    assert train_index.isdisjoint(test_index)
    assert train_index | test_index == set(dataset.index)


@pytest.mark.parametrize("train_fraction", [0.1, 0.5, 0.66, 0.9])
def test_split_covers_dataset(dataset, train_fraction):
    """Tests that the split is a partition for several fractions."""
    data_split = split(dataset, train_fraction=train_fraction, seed=7)

    assert len(data_split.train) + len(data_split.test) == len(dataset)
    assert set(data_split.train.index).isdisjoint(data_split.test.index)


def test_split_is_deterministic(dataset):
    """Tests that one seed always yields the same partition."""
    first = split(dataset, seed=42)
    second = split(dataset, seed=42)
    other = split(dataset, seed=43)

    assert first.train.index.equals(second.train.index)
    assert first.test.index.equals(second.test.index)
    assert not first.train.index.equals(other.train.index)


@pytest.mark.parametrize("train_fraction", [0, 1, -0.2, 1.5])
def test_split_rejects_fraction(dataset, train_fraction):
    with pytest.raises(InvalidConfigurationError):
        split(dataset, train_fraction=train_fraction, seed=42)


def test_split_rejects_empty_side(dataset):
    """Tests that a split leaving no training record fails."""
    with pytest.raises(InsufficientDataError):
        split(dataset.iloc[:1], train_fraction=0.75, seed=42)


def test_make_folds_equal_sizes(dataset):
    """Tests fold assignment of 100 records into 5 folds.

    Every fold holds exactly 20 records and every record one fold.
    """
    # Act
    folds = make_folds(dataset, v=5, seed=1)

    # Assert
    assert folds.v == 5
    assert len(folds) == len(dataset)
    assert folds.fold_sizes() == [20] * 5
    held_out = np.concatenate([folds.assessment(fold) for fold in range(5)])
    assert sorted(held_out.tolist()) == list(range(len(dataset)))


def test_make_folds_uneven_sizes(dataset):
    """Tests that fold sizes differ by at most one record."""
    folds = make_folds(dataset.iloc[:75], v=10, seed=3)

    sizes = folds.fold_sizes()
    assert len(sizes) == 10
    assert min(sizes) > 0
    assert max(sizes) - min(sizes) <= 1
    assert sum(sizes) == 75


def test_make_folds_analysis_complements_assessment(dataset):
    folds = make_folds(dataset, v=4, seed=0)

    for fold in range(folds.v):
        analysis, assessment = folds.analysis(fold), folds.assessment(fold)
        assert len(analysis) + len(assessment) == len(dataset)
        assert set(analysis).isdisjoint(assessment)
        assert (folds.fold_ids[assessment] == fold).all()


def test_make_folds_is_deterministic(dataset):
    first = make_folds(dataset, v=5, seed=1)
    second = make_folds(dataset, v=5, seed=1)

    assert (first.fold_ids == second.fold_ids).all()


@pytest.mark.parametrize("v", [1, 0, 101])
def test_make_folds_rejects_fold_count(dataset, v):
    with pytest.raises(InvalidConfigurationError):
        make_folds(dataset, v=v, seed=1)


def test_fold_assignment_is_read_only():
    folds = FoldAssignment(fold_ids=np.array([0, 1, 0, 1]), v=2)

    with pytest.raises(ValueError):
        folds.fold_ids[0] = 1
