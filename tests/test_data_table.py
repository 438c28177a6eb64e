import numpy as np
import pytest
from multispline import DataTable, DataSample

@pytest.fixture
def grid_table():
    table = DataTable()
    # inserted in reverse order on purpose
    for x0 in (2., 1., 0.):
        for x1 in (0.5, -0.5):
            table.add_sample([x0, x1], x0 - x1)
    return table

def test_counts(grid_table):
    assert grid_table.get_num_variables()==2
    assert grid_table.get_num_samples()==6
    assert len(grid_table)==6

def test_table_x(grid_table):
    table_x = grid_table.get_table_x()
    np.testing.assert_array_equal(table_x[0], [0., 1., 2.])
    np.testing.assert_array_equal(table_x[1], [-0.5, 0.5])

def test_sorted_iteration(grid_table):
    X = grid_table.get_samples_x()
    np.testing.assert_array_equal(X, [[0, -0.5], [0, 0.5], [1, -0.5], [1, 0.5], [2, -0.5], [2, 0.5]])
    np.testing.assert_allclose(grid_table.get_samples_y(), X[:, 0] - X[:, 1])
    assert [sample.x for sample in grid_table]==[tuple(x) for x in X]

def test_is_grid_complete(grid_table):
    assert grid_table.is_grid_complete()
    grid_table.add_sample([3., 0.5], 2.5)
    assert not grid_table.is_grid_complete()
    assert not DataTable().is_grid_complete()

def test_add_sample_errors(grid_table):
    with pytest.raises(ValueError):
        grid_table.add_sample([0., 0.5], 1.)
    with pytest.raises(ValueError):
        grid_table.add_sample([0., 0.5, 1.], 1.)
    with pytest.raises(ValueError):
        grid_table.add_sample([0., np.nan], 1.)
    with pytest.raises(ValueError):
        grid_table.add_sample([0., 0.], np.inf)
    assert grid_table.get_num_samples()==6

def test_allow_duplicates():
    table = DataTable(allow_duplicates=True)
    table.add_sample(1., 2.)
    table.add_sample(1., 2.)
    assert table.get_num_samples()==2
    assert table.get_num_variables()==1
    assert table.is_grid_complete()

def test_data_sample_ordering():
    assert DataSample([0., 1.], 0.) < DataSample([1., 0.], 0.)
    assert DataSample(2., 1.).x==(2., )
