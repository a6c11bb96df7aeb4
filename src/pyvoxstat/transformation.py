from pyvoxstat.util import PyVoxStatError

import dataclasses
import numpy as np


@dataclasses.dataclass(frozen=True, eq=False)
class AffineTransformation:
    """A homogeneous 4x4 transformation applied to voxel centres on output

    The transformation only changes where a voxel is reported in world
    space. It never influences how new points are binned.
    """

    affine_transformation: np.ndarray = dataclasses.field(
        default_factory=lambda: np.identity(4)
    )

    def __post_init__(self):
        matrix = np.array(self.affine_transformation, dtype=np.float64)
        if matrix.shape != (4, 4):
            raise PyVoxStatError(
                f"Affine transformations need to be of shape 4x4, got {matrix.shape}"
            )
        if not np.all(np.isfinite(matrix)):
            raise PyVoxStatError("Affine transformations need to be finite")

        # The matrix is shared between copies, so it must not be writable
        matrix.setflags(write=False)
        object.__setattr__(self, "affine_transformation", matrix)

    @classmethod
    def identity(cls):
        return cls(np.identity(4))

    @classmethod
    def translation(cls, tx, ty, tz):
        T = np.identity(4)
        T[:3, 3] = (tx, ty, tz)
        return cls(T)

    @classmethod
    def rotation_x(cls, angle):
        """Rotation around the x axis, angle given in radians"""
        c, s = np.cos(angle), np.sin(angle)
        T = np.identity(4)
        T[1, 1], T[1, 2] = c, -s
        T[2, 1], T[2, 2] = s, c
        return cls(T)

    @classmethod
    def rotation_y(cls, angle):
        """Rotation around the y axis, angle given in radians"""
        c, s = np.cos(angle), np.sin(angle)
        T = np.identity(4)
        T[0, 0], T[0, 2] = c, s
        T[2, 0], T[2, 2] = -s, c
        return cls(T)

    @classmethod
    def rotation_z(cls, angle):
        """Rotation around the z axis, angle given in radians"""
        c, s = np.cos(angle), np.sin(angle)
        T = np.identity(4)
        T[0, 0], T[0, 1] = c, -s
        T[1, 0], T[1, 1] = s, c
        return cls(T)

    @property
    def is_identity(self) -> bool:
        return bool(np.array_equal(self.affine_transformation, np.identity(4)))

    def __matmul__(self, other):
        if not isinstance(other, AffineTransformation):
            return NotImplemented
        return AffineTransformation(
            self.affine_transformation @ other.affine_transformation
        )

    def apply(self, x, y, z):
        """Transform a single point, returns a tuple (x, y, z)"""
        M = self.affine_transformation
        return (
            float(M[0, 0] * x + M[0, 1] * y + M[0, 2] * z + M[0, 3]),
            float(M[1, 0] * x + M[1, 1] * y + M[1, 2] * z + M[1, 3]),
            float(M[2, 0] * x + M[2, 1] * y + M[2, 2] * z + M[2, 3]),
        )

    def apply_points(self, points: np.ndarray) -> np.ndarray:
        """Transform an array of points of shape (n, 3)

        Only the upper 3x4 block is used, the projective row is ignored.
        """
        points = np.asarray(points, dtype=np.float64)
        if len(points.shape) != 2 or points.shape[1] != 3:
            raise PyVoxStatError("Points need to be given as an array of shape nx3")

        M = self.affine_transformation
        return points @ M[:3, :3].T + M[:3, 3]


def as_transformation(transform):
    """Turn a 4x4 array-like or an AffineTransformation into the latter"""
    if transform is None:
        return AffineTransformation.identity()
    if isinstance(transform, AffineTransformation):
        return transform
    return AffineTransformation(transform)
