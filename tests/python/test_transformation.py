from pyvoxstat.transformation import *
from pyvoxstat.util import PyVoxStatError

import math
import numpy as np
import pytest


def test_identity():
    trafo = AffineTransformation()
    assert trafo.is_identity
    assert AffineTransformation.identity().is_identity
    assert trafo.apply(1.0, 2.0, 3.0) == (1.0, 2.0, 3.0)


def test_translation():
    trafo = AffineTransformation.translation(1.0, -2.0, 3.0)
    assert not trafo.is_identity
    assert np.allclose(trafo.apply(0.0, 0.0, 0.0), (1.0, -2.0, 3.0))


@pytest.mark.parametrize(
    "factory,point,expected",
    [
        (AffineTransformation.rotation_x, (0.0, 1.0, 0.0), (0.0, 0.0, 1.0)),
        (AffineTransformation.rotation_y, (0.0, 0.0, 1.0), (1.0, 0.0, 0.0)),
        (AffineTransformation.rotation_z, (1.0, 0.0, 0.0), (0.0, 1.0, 0.0)),
    ],
)
def test_rotations(factory, point, expected):
    trafo = factory(math.pi / 2.0)
    assert np.allclose(trafo.apply(*point), expected)


def test_composition():
    rotate = AffineTransformation.rotation_z(math.pi / 2.0)
    translate = AffineTransformation.translation(1.0, 0.0, 0.0)

    # The right hand side is applied first
    assert np.allclose((translate @ rotate).apply(1.0, 0.0, 0.0), (1.0, 1.0, 0.0))
    assert np.allclose((rotate @ translate).apply(1.0, 0.0, 0.0), (0.0, 2.0, 0.0))


def test_apply_points():
    trafo = AffineTransformation.translation(1.0, 2.0, 3.0)
    points = np.zeros((4, 3))
    assert np.allclose(trafo.apply_points(points), [[1.0, 2.0, 3.0]] * 4)

    with pytest.raises(PyVoxStatError):
        trafo.apply_points(np.zeros(3))


def test_invalid_matrix():
    with pytest.raises(PyVoxStatError):
        AffineTransformation(np.identity(3))

    matrix = np.identity(4)
    matrix[0, 3] = np.nan
    with pytest.raises(PyVoxStatError):
        AffineTransformation(matrix)


def test_matrix_is_immutable():
    matrix = np.identity(4)
    trafo = AffineTransformation(matrix)

    # Changes to the input do not leak into the transformation
    matrix[0, 3] = 5.0
    assert trafo.is_identity

    with pytest.raises(ValueError):
        trafo.affine_transformation[0, 3] = 5.0


def test_as_transformation():
    assert as_transformation(None).is_identity

    trafo = AffineTransformation.translation(1.0, 0.0, 0.0)
    assert as_transformation(trafo) is trafo
    assert not as_transformation(trafo.affine_transformation.copy()).is_identity
