import pytest

from builders import calibration_frame, grid_fis
from pmfis.data import CalibrationDataset


@pytest.fixture
def fis():
    return grid_fis()


@pytest.fixture
def frame():
    return calibration_frame()


@pytest.fixture
def dataset(frame):
    return CalibrationDataset.from_frame(frame, ["pm2p5_x", "relative_humidity"])
