import numpy as np
import pytest

from capturelab.averaging import average_complex
from capturelab.errors import IncompatibleResponses
from capturelab.response import FrequencyResponse

from conftest import make_response, noisy_response


def test_average_with_itself_is_identity():
    response = noisy_response(seed=3)

    averaged = average_complex(response, response)

    np.testing.assert_allclose(averaged.magnitudes, response.magnitudes, atol=1e-9)
    np.testing.assert_allclose(averaged.phases, response.phases, atol=1e-9)
    np.testing.assert_array_equal(averaged.frequencies, response.frequencies)


def test_opposite_phase_cancels():
    a = make_response(level=-6.0, phase=0.0)
    b = make_response(level=-6.0, phase=180.0)

    averaged = average_complex(a, b)

    # Far below anything a dB mean of the two (-6 dB) would give
    assert np.all(averaged.magnitudes < -200)
    assert not np.allclose(averaged.magnitudes, (a.magnitudes + b.magnitudes) / 2)


def test_quadrature_opposition_cancels():
    freqs = [100.0, 200.0]
    a = FrequencyResponse(freqs, [0.0, 0.0], [90.0, 90.0])
    b = FrequencyResponse(freqs, [0.0, 0.0], [-90.0, -90.0])

    averaged = average_complex(a, b)

    # cos(90deg) is not exactly zero in floating point
    assert np.all(averaged.magnitudes < -250)


def test_quadrature_average():
    freqs = [1000.0]
    a = FrequencyResponse(freqs, [0.0], [0.0])
    b = FrequencyResponse(freqs, [0.0], [90.0])

    averaged = average_complex(a, b)

    # |(1 + j) / 2| = 1/sqrt(2) -> -3.01 dB at 45 degrees
    assert averaged.magnitudes[0] == pytest.approx(-3.0103, abs=1e-3)
    assert averaged.phases[0] == pytest.approx(45.0)


def test_missing_phase_is_incompatible():
    with pytest.raises(IncompatibleResponses):
        average_complex(make_response(), make_response(with_phase=False))


def test_different_grids_are_incompatible():
    a = make_response()
    b = make_response(freqs=np.geomspace(30, 20000, 64))
    with pytest.raises(IncompatibleResponses):
        average_complex(a, b)
