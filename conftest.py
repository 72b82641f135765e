# conftest.py
import matplotlib
import pytest

matplotlib.use('Agg')


@pytest.fixture(autouse=True)
def close_figures():
    """Non-interactive backend for all tests; drop figures left open by a test."""
    yield
    import matplotlib.pyplot as plt
    plt.close('all')
