from pyvoxstat.aggregation import as_aggregation_method, reduce_samples
from pyvoxstat.cell import VoxelCell
from pyvoxstat.logger import logger_context
from pyvoxstat.transformation import AffineTransformation, as_transformation
from pyvoxstat.util import (
    PyVoxStatError,
    as_point_triple,
    as_radius,
    get_num_threads,
)

from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor

import itertools
import logging
import math
import numpy as np
import scipy.special
import threading
import typing


logger = logging.getLogger("pyvoxstat")

VoxelKey = typing.Tuple[int, int, int]

# Below this number of keys, a pass is not worth distributing to the pool
PARALLEL_THRESHOLD = 2048

# Voxel indices need to be representable as 64 bit integers
MAX_VOXEL_INDEX = 2.0**62


def neighborhood_offsets(radius: int, include_center: bool = True):
    """All integer offsets of the cube of given radius around a voxel"""
    span = range(-radius, radius + 1)
    return [
        offset
        for offset in itertools.product(span, span, span)
        if include_center or offset != (0, 0, 0)
    ]


class VoxelGrid:
    def __init__(
        self,
        cell_size: float,
        offset: typing.Optional[typing.Sequence[float]] = None,
        transform=None,
    ):
        """A sparse, regular grid of cubic voxels holding scalar samples

        Points are binned in the binning frame given by :code:`cell_size`
        and :code:`offset`. The :code:`transform` only defines the output
        frame used when reporting voxel centres in world space.

        :param cell_size:
            The edge length of each voxel. Needs to be positive and finite.
        :type cell_size: float
        :param offset:
            The world space position of the corner of voxel (0, 0, 0),
            defaults to the origin.
        :param transform:
            A 4x4 affine matrix or :class:`AffineTransformation` applied to
            voxel centres on output, defaults to the identity.
        """
        try:
            cell_size = float(cell_size)
        except (TypeError, ValueError):
            raise PyVoxStatError(f"The cell size needs to be a number, got {cell_size!r}")
        if not math.isfinite(cell_size) or cell_size <= 0.0:
            raise PyVoxStatError(f"The cell size needs to be positive, got {cell_size}")

        self._cell_size = cell_size
        self._offset = as_point_triple(
            (0.0, 0.0, 0.0) if offset is None else offset, name="offset"
        )
        self._transform = as_transformation(transform)

        self._cells: typing.Dict[VoxelKey, VoxelCell] = {}

        # Guards every structural change of the cell map. It is reentrant so
        # that bulk operations can reuse the single point operations.
        self._lock = threading.RLock()

        # Cached statistics, only valid after refresh_statistics
        self._count = 0
        self._sum = 0.0
        self._min = np.nan
        self._max = np.nan
        self._mean = np.nan
        self._std_dev = np.nan

    #
    # Properties
    #

    @property
    def cell_size(self) -> float:
        return self._cell_size

    @property
    def offset(self) -> typing.Tuple[float, float, float]:
        return self._offset

    @offset.setter
    def offset(self, offset):
        offset = as_point_triple(offset, name="offset")
        with self._lock:
            self._offset = offset

    @property
    def transform(self) -> AffineTransformation:
        return self._transform

    def set_transform(self, transform):
        """Replace the output transformation without re-binning any voxel

        :param transform:
            A 4x4 array-like or :class:`AffineTransformation`. None resets
            to the identity.
        """
        transform = as_transformation(transform)
        with self._lock:
            self._transform = transform

    @property
    def count(self) -> int:
        """The number of voxels with a value at the last statistics refresh"""
        return self._count

    @property
    def min(self) -> float:
        return self._min

    @property
    def max(self) -> float:
        return self._max

    @property
    def mean(self) -> float:
        return self._mean

    @property
    def std_dev(self) -> float:
        """The population standard deviation of all voxel values"""
        return self._std_dev

    def statistics(self) -> typing.Dict[str, float]:
        return {
            "count": self._count,
            "min": self._min,
            "max": self._max,
            "mean": self._mean,
            "std_dev": self._std_dev,
        }

    @property
    def bounding_box(self):
        """The world space centres of the lowest and the highest voxel

        :return:
            A tuple of two points ((minx, miny, minz), (maxx, maxy, maxz)).
            An empty grid reports two points at the origin.
        """
        with self._lock:
            if not self._cells:
                return (0.0, 0.0, 0.0), (0.0, 0.0, 0.0)
            keys = np.array(list(self._cells), dtype=np.int64)

        lower = tuple(int(k) for k in keys.min(axis=0))
        upper = tuple(int(k) for k in keys.max(axis=0))
        return self.voxel_to_world(lower), self.voxel_to_world(upper)

    def __len__(self):
        return len(self._cells)

    def __contains__(self, key):
        return tuple(key) in self._cells

    def __repr__(self):
        return f"VoxelGrid with {self._count} voxels (cell size {self._cell_size})"

    #
    # Coordinate mapping
    #

    def world_to_voxel(self, x: float, y: float, z: float) -> VoxelKey:
        """Return the key of the voxel containing the given world position"""
        ox, oy, oz = self._offset
        return (
            math.floor((x - ox) / self._cell_size),
            math.floor((y - oy) / self._cell_size),
            math.floor((z - oz) / self._cell_size),
        )

    def _voxel_indices(self, points):
        points = np.asarray(points, dtype=np.float64)
        return np.floor((points - np.asarray(self._offset)) / self._cell_size)

    def world_to_voxels(self, points: np.ndarray) -> np.ndarray:
        """Vectorized :meth:`world_to_voxel` for an array of shape (n, 3)

        Raises if a position lies outside the range of 64 bit voxel indices.
        """
        indices = self._voxel_indices(points)
        if not np.all(np.abs(indices) < MAX_VOXEL_INDEX):
            raise PyVoxStatError("Positions lie outside the representable voxel range")
        return indices.astype(np.int64)

    def voxel_to_world(self, key: VoxelKey) -> typing.Tuple[float, float, float]:
        """Return the world space centre of the given voxel

        The centre is computed in the binning frame and then mapped through
        the output transformation.
        """
        half = self._cell_size / 2.0
        x, y, z = (
            key[i] * self._cell_size + half + self._offset[i] for i in range(3)
        )
        if self._transform.is_identity:
            return (float(x), float(y), float(z))
        return self._transform.apply(x, y, z)

    #
    # Ingestion
    #

    def add_point(self, x: float, y: float, z: float, scalar: float) -> bool:
        """Bin a single scalar sample into the grid

        NaN scalars are dropped after the voxel has been created, points
        with non-finite coordinates or beyond the 64 bit voxel index range
        are dropped entirely.

        :return: Whether the sample was stored
        :rtype: bool
        """
        if not (math.isfinite(x) and math.isfinite(y) and math.isfinite(z)):
            logger.debug(f"Dropping sample at non-finite position ({x}, {y}, {z})")
            return False

        with self._lock:
            key = self.world_to_voxel(x, y, z)
            if any(abs(k) >= MAX_VOXEL_INDEX for k in key):
                logger.debug(f"Dropping sample outside the voxel range ({x}, {y}, {z})")
                return False
            cell = self._cells.get(key)
            if cell is None:
                cell = VoxelCell()
                self._cells[key] = cell
            return cell.add(scalar)

    def add_points(self, points) -> int:
        """Bin a batch of (x, y, z, scalar) samples into the grid

        The whole batch is inserted atomically with respect to other calls
        of :meth:`add_points` and :meth:`add_point`, so that several
        producers may feed the same grid concurrently.

        :param points:
            An array of shape (n, 4) or an iterable of 4-tuples.
        :return: The number of samples stored
        :rtype: int
        """
        if not isinstance(points, np.ndarray):
            points = list(points)
        batch = np.asarray(points, dtype=np.float64)

        if batch.size == 0:
            return 0
        if len(batch.shape) != 2 or batch.shape[1] != 4:
            raise PyVoxStatError("Points need to be given as an array of shape nx4")

        added = 0
        with self._lock:
            # Non-finite positions and positions beyond the index range are dropped
            indices = self._voxel_indices(batch[:, :3])
            binnable = np.all(np.abs(indices) < MAX_VOXEL_INDEX, axis=1)
            if not np.all(binnable):
                logger.debug(
                    f"Dropping {np.count_nonzero(~binnable)} samples at positions that cannot be binned"
                )
                batch = batch[binnable]
                indices = indices[binnable]

            keys = indices.astype(np.int64).tolist()
            cells = self._cells
            for key, scalar in zip(keys, batch[:, 3].tolist()):
                key = tuple(key)
                cell = cells.get(key)
                if cell is None:
                    cell = VoxelCell()
                    cells[key] = cell
                added += cell.add(scalar)

        if added < batch.shape[0]:
            logger.debug(f"Dropped {batch.shape[0] - added} NaN samples")
        return added

    def add_value(self, key: VoxelKey, value: float):
        """Insert a voxel that already holds a reduced value

        An existing voxel at that key is replaced. NaN values are ignored.
        """
        if value is None or math.isnan(value):
            return
        key = tuple(int(k) for k in key)
        with self._lock:
            self._cells[key] = VoxelCell(value=value)

    #
    # Internals for whole-grid passes
    #

    def _parallel_map(self, func, keys):
        """Evaluate func for all keys on the worker pool, preserving order

        The caller needs to hold the structural lock so that the key set
        stays frozen while workers read the cell map.
        """
        keys = list(keys)
        num_threads = get_num_threads()
        if num_threads == 1 or len(keys) < PARALLEL_THRESHOLD:
            return [func(key) for key in keys]

        chunk_size = math.ceil(len(keys) / num_threads)
        chunks = [keys[i : i + chunk_size] for i in range(0, len(keys), chunk_size)]
        with ThreadPoolExecutor(max_workers=num_threads) as pool:
            results = pool.map(lambda chunk: [func(key) for key in chunk], chunks)
            return list(itertools.chain.from_iterable(results))

    def _valued_items(self):
        keys = [key for key, cell in self._cells.items() if cell.has_value]
        values = np.array([self._cells[key].value for key in keys], dtype=np.float64)
        return keys, values

    def _as_values(self, results, count):
        """Convert the results of a custom function before any of them is written

        None stands for an absent value.
        """
        try:
            values = np.asarray(
                [np.nan if r is None else r for r in results], dtype=np.float64
            )
        except (TypeError, ValueError) as e:
            raise PyVoxStatError(f"Custom function returned a non-numeric value: {e}")
        if values.shape != (count,):
            raise PyVoxStatError("Custom function needs to return a single number")
        return values

    def _transform_values(self, func, msg):
        """Replace every present value by func applied to the array of values"""
        with self._lock, logger_context(msg):
            keys, values = self._valued_items()
            if not keys:
                logger.debug(f"No voxel values present, skipping: {msg}")
                return

            new_values = np.asarray(func(values), dtype=np.float64)
            for key, value in zip(keys, new_values.tolist()):
                self._cells[key].assign(value)

            self.refresh_statistics()

    #
    # Aggregation and statistics
    #

    def aggregate(self, method="mean", radius: int = 0):
        """Reduce the raw samples around each voxel to a single value

        The raw samples of all voxels whose keys differ by at most
        :code:`radius` in each axis are pooled and reduced with the given
        method. Voxels whose pool has no defined result keep an absent
        value but are not removed. Raw samples are retained, so a grid can
        be aggregated again with different parameters.

        :param method:
            The reducer, an :class:`AggregationMethod` or its name.
        :param radius:
            The non-negative voxel radius of the pooling neighborhood.
        :type radius: int
        """
        method = as_aggregation_method(method)
        radius = as_radius(radius)

        with self._lock, logger_context(
            f"Aggregating {len(self._cells)} voxels ({method.value}, radius {radius})"
        ):
            cells = self._cells
            offsets = neighborhood_offsets(radius)

            def _reduce(key):
                if radius == 0:
                    return reduce_samples(cells[key].raw_samples, method)

                x, y, z = key
                pool = []
                for dx, dy, dz in offsets:
                    neighbor = cells.get((x + dx, y + dy, z + dz))
                    if neighbor is not None:
                        pool.extend(neighbor.raw_samples)
                return reduce_samples(pool, method)

            keys = list(cells)
            results = self._parallel_map(_reduce, keys)

            undefined = 0
            for key, value in zip(keys, results):
                cells[key].value = value
                undefined += not cells[key].has_value
            if undefined:
                logger.debug(f"{undefined} voxels have no defined {method.value}")

            self.refresh_statistics()

    def refresh_statistics(self):
        """Recompute count, min, max, mean and standard deviation

        If no voxel holds a value, the previous statistics are kept.
        """
        with self._lock:
            _, values = self._valued_items()
            if values.size == 0:
                return

            self._count = int(values.size)
            self._min = float(values.min())
            self._max = float(values.max())
            self._sum = float(values.sum())
            self._std_dev = float(np.std(values))
            self._mean = self._sum / self._count

    #
    # Elementwise transforms
    #

    def normalise(self):
        """Z-score normalisation using the mean and standard deviation of the grid

        A grid without any spread is mapped to zero everywhere.
        """

        def _zscore(values):
            std = np.std(values)
            if std == 0.0:
                return np.zeros_like(values)
            return (values - np.mean(values)) / std

        self._transform_values(_zscore, "Normalising voxel values")

    def remap(
        self,
        out_low: float,
        out_high: float,
        in_low: typing.Optional[float] = None,
        in_high: typing.Optional[float] = None,
    ):
        """Linearly map the input range onto [out_low, out_high]

        :param out_low: The value that in_low is mapped to
        :param out_high: The value that in_high is mapped to
        :param in_low: The lower input bound, defaults to the grid minimum
        :param in_high: The upper input bound, defaults to the grid maximum
        """
        if in_low is not None and in_high is not None and in_low == in_high:
            raise PyVoxStatError(
                f"Cannot remap from an empty input range [{in_low}, {in_high}]"
            )

        with self._lock:
            _, values = self._valued_items()
            if values.size == 0:
                logger.debug("No voxel values present, skipping remap")
                return

            low = float(values.min()) if in_low is None else float(in_low)
            high = float(values.max()) if in_high is None else float(in_high)
            if low == high:
                raise PyVoxStatError(
                    f"Cannot remap from an empty input range [{low}, {high}]"
                )

            scale = (out_high - out_low) / (high - low)
            self._transform_values(
                lambda v: out_low + (v - low) * scale,
                f"Remapping voxel values from [{low}, {high}] to [{out_low}, {out_high}]",
            )

    def max_min_normalise(
        self, min_value: typing.Optional[float] = None, max_value: typing.Optional[float] = None
    ):
        """Map [min_value, max_value] onto [0, 1]

        Omitted bounds default to the current minimum and maximum of the grid.
        """
        self.remap(0.0, 1.0, in_low=min_value, in_high=max_value)

    def clamp(self, min_value: float, max_value: float):
        """Restrict all voxel values to [min_value, max_value]"""
        if min_value > max_value:
            raise PyVoxStatError(
                f"Clamping requires min <= max, got [{min_value}, {max_value}]"
            )
        self._transform_values(
            lambda v: np.clip(v, min_value, max_value),
            f"Clamping voxel values to [{min_value}, {max_value}]",
        )

    def sigmoid(self, slope: float = 1.0):
        """Squash all voxel values with the logistic function 1 / (1 + exp(-slope * v))"""
        self._transform_values(
            lambda v: scipy.special.expit(slope * v),
            f"Applying sigmoid with slope {slope}",
        )

    def column_normalise(self):
        """Z-score normalise every (x, y) column of voxels independently

        Columns with less than two values are left unchanged, columns
        without spread are mapped to zero.
        """
        with self._lock:
            keys, _ = self._valued_items()
            columns = defaultdict(list)
            for index, (x, y, _) in enumerate(keys):
                columns[(x, y)].append(index)

            def _column_zscore(values):
                result = values.copy()
                for indices in columns.values():
                    if len(indices) < 2:
                        continue
                    column = values[indices]
                    std = np.std(column)
                    if std == 0.0:
                        result[indices] = 0.0
                    else:
                        result[indices] = (column - np.mean(column)) / std
                return result

            self._transform_values(
                _column_zscore, f"Normalising {len(columns)} voxel columns"
            )

    def execute_custom_function(self, function: typing.Callable[[float], float]):
        """Replace every present value v by function(v)

        The function is evaluated on the worker pool. If it raises, the
        exception propagates and the grid is left unchanged. Results that
        are not numbers raise a :class:`PyVoxStatError`, None marks an
        absent value.
        """
        with self._lock, logger_context("Executing custom function on voxel values"):
            keys, _ = self._valued_items()
            cells = self._cells
            results = self._parallel_map(lambda key: function(cells[key].value), keys)
            results = self._as_values(results, len(keys))
            for key, value in zip(keys, results.tolist()):
                cells[key].assign(value)
            self.refresh_statistics()

    def execute_custom_function_pairwise(
        self, function: typing.Callable[[float, float], float], other: "VoxelGrid"
    ):
        """Replace v by function(v, w) where w is the value of other at the same key

        Only keys that hold a value in both grids are touched.
        """
        # Snapshot the other grid first, locking both at once could deadlock
        with other._lock:
            other_values = {
                key: cell.value for key, cell in other._cells.items() if cell.has_value
            }

        with self._lock, logger_context(
            "Executing pairwise custom function on voxel values"
        ):
            cells = self._cells
            keys = [
                key
                for key, cell in cells.items()
                if cell.has_value and key in other_values
            ]
            results = self._parallel_map(
                lambda key: function(cells[key].value, other_values[key]), keys
            )
            results = self._as_values(results, len(keys))
            for key, value in zip(keys, results.tolist()):
                cells[key].assign(value)
            self.refresh_statistics()

    #
    # Bulk value assignment
    #

    def clear_data(self):
        """Reset every voxel to the empty state, keeping all keys"""
        with self._lock:
            for cell in self._cells.values():
                cell.clear()

    def set_constant(self, value: float):
        """Assign the same value to every voxel, discarding raw samples"""
        with self._lock:
            for cell in self._cells.values():
                cell.assign(value)
            self.refresh_statistics()

    def set_value(self, key: VoxelKey, value: float):
        """Assign a value to an existing voxel, unknown keys are ignored"""
        with self._lock:
            cell = self._cells.get(tuple(key))
            if cell is not None:
                cell.assign(value)

    def get_value(self, key: VoxelKey) -> typing.Optional[float]:
        cell = self._cells.get(tuple(key))
        return None if cell is None else cell.value

    def get_cell(self, key: VoxelKey) -> typing.Optional[VoxelCell]:
        return self._cells.get(tuple(key))

    #
    # Filtering and pruning
    #

    def prune(self, min_raw_sample_count: int):
        """Remove all voxels that received less than the given number of raw samples"""
        if min_raw_sample_count < 0:
            raise PyVoxStatError(
                f"The minimum sample count must not be negative, got {min_raw_sample_count}"
            )

        with self._lock, logger_context(
            f"Pruning voxels with less than {min_raw_sample_count} samples"
        ):
            before = len(self._cells)
            self._cells = {
                key: cell
                for key, cell in self._cells.items()
                if cell.sample_count >= min_raw_sample_count
            }
            logger.info(f"Pruned {before - len(self._cells)} of {before} voxels")
            self.refresh_statistics()

    def filter_by_value_range(
        self, min_value: float, max_value: float, remove_zero: bool = False
    ):
        """Remove all voxels whose value lies outside [min_value, max_value]

        Voxels without a value are kept.

        :param remove_zero:
            Whether voxels with a value of exactly zero are removed as well
        :type remove_zero: bool
        """
        if min_value > max_value:
            raise PyVoxStatError(
                f"Filtering requires min <= max, got [{min_value}, {max_value}]"
            )

        def _keep(cell):
            if not cell.has_value:
                return True
            if remove_zero and cell.value == 0.0:
                return False
            return min_value <= cell.value <= max_value

        with self._lock, logger_context(
            f"Filtering voxel values to [{min_value}, {max_value}]"
        ):
            before = len(self._cells)
            self._cells = {
                key: cell for key, cell in self._cells.items() if _keep(cell)
            }
            logger.info(f"Removed {before - len(self._cells)} of {before} voxels")
            self.refresh_statistics()

    #
    # Spatial autocorrelation
    #

    def spatial_correlation(
        self,
        radius: int,
        mean: typing.Optional[float] = None,
        std: typing.Optional[float] = None,
    ):
        """Replace every voxel value by its Getis-Ord Gi*-style hot spot score

        The neighborhood of a voxel is the cube of given radius around it,
        excluding the voxel itself. All present neighbor values carry a
        weight of one. A voxel with less than two valued neighbors, or a
        grid without spread, scores zero.

        The scores are computed from a frozen view of the grid into a new
        cell map which then replaces the old one. Raw samples are discarded.

        :param radius:
            The non-negative voxel radius of the neighborhood
        :type radius: int
        :param mean:
            The reference mean, defaults to the mean of the grid
        :param std:
            The reference standard deviation, defaults to the population
            standard deviation of the grid
        """
        radius = as_radius(radius)
        for name, value in (("mean", mean), ("std", std)):
            if value is not None and not math.isfinite(value):
                raise PyVoxStatError(f"The reference {name} needs to be finite")
        if std is not None and std < 0.0:
            raise PyVoxStatError(f"The reference std must not be negative, got {std}")

        with self._lock, logger_context(
            f"Calculating spatial correlation of {len(self._cells)} voxels (radius {radius})"
        ):
            keys, values = self._valued_items()
            lookup = dict(zip(keys, values.tolist()))
            n = len(lookup)

            if mean is None:
                mean = float(np.mean(values)) if n else 0.0
            if std is None:
                std = float(np.std(values)) if n else 0.0

            offsets = neighborhood_offsets(radius, include_center=False)

            def _gi_star(key):
                x, y, z = key
                neighbors = [
                    lookup[neighbor]
                    for neighbor in ((x + dx, y + dy, z + dz) for dx, dy, dz in offsets)
                    if neighbor in lookup
                ]
                weight_sum = len(neighbors)
                if weight_sum < 2 or std == 0.0 or n < 2:
                    return 0.0

                # With unit weights, the sum of squared weights is the weight sum
                spread = (n * weight_sum - weight_sum**2) / (n - 1)
                if spread <= 0.0:
                    return 0.0

                numerator = math.fsum(neighbors) - mean * weight_sum
                return numerator / (std * math.sqrt(spread))

            all_keys = list(self._cells)
            scores = self._parallel_map(_gi_star, all_keys)
            self._cells = {
                key: VoxelCell(value=score) for key, score in zip(all_keys, scores)
            }
            self.refresh_statistics()

    #
    # Query surface
    #

    def items(self) -> typing.List[typing.Tuple[VoxelKey, float]]:
        """All (key, value) pairs of valued voxels, sorted by x, then y, then z"""
        with self._lock:
            pairs = [
                (key, cell.value) for key, cell in self._cells.items() if cell.has_value
            ]
        return sorted(pairs)

    def world_items(self):
        """All (world position, value) pairs in the order of :meth:`items`"""
        return [(self.voxel_to_world(key), value) for key, value in self.items()]

    def keys(self) -> np.ndarray:
        """The keys of valued voxels as an array of shape (n, 3)"""
        items = self.items()
        return np.array([key for key, _ in items], dtype=np.int64).reshape(-1, 3)

    def values(self) -> np.ndarray:
        """The values of valued voxels as an array of shape (n,)"""
        return np.array([value for _, value in self.items()], dtype=np.float64)

    def world_positions(self) -> np.ndarray:
        """The world space voxel centres of valued voxels as an array of shape (n, 3)"""
        keys = self.keys()
        centres = (keys + 0.5) * self._cell_size + np.asarray(self._offset)
        if self._transform.is_identity:
            return centres
        return self._transform.apply_points(centres)

    #
    # Copying
    #

    def copy(self):
        """Create a fully independent deep copy of this grid"""
        with self._lock:
            clone = VoxelGrid(self._cell_size, offset=self._offset, transform=self._transform)
            clone._cells = {key: cell.copy() for key, cell in self._cells.items()}
            clone._count = self._count
            clone._sum = self._sum
            clone._min = self._min
            clone._max = self._max
            clone._mean = self._mean
            clone._std_dev = self._std_dev
        return clone

    def __copy__(self):
        return self.copy()

    def __deepcopy__(self, memo):
        return self.copy()
