from pyvoxstat.grid import VoxelGrid
from pyvoxstat.util import PyVoxStatError

import dataclasses
import logging
import scipy.stats


logger = logging.getLogger("pyvoxstat")


@dataclasses.dataclass(frozen=True)
class CorrelationResult:
    """Correlation coefficients between the values of two voxel grids"""

    pearson: float
    pearson_p_value: float
    spearman: float
    spearman_p_value: float
    count: int


def correlation_coefficients(grid1: VoxelGrid, grid2: VoxelGrid) -> CorrelationResult:
    """Compute Pearson and Spearman correlation between two voxel grids

    The values of both grids are paired in ascending key order, so the
    grids are expected to share the same structure (see :func:`match_structure`).
    The p-values are those of the two-sided t-test with n - 2 degrees of freedom.

    :param grid1:
        The first grid
    :type grid1: VoxelGrid
    :param grid2:
        The second grid
    :type grid2: VoxelGrid
    """
    values1 = grid1.values()
    values2 = grid2.values()

    if values1.size != values2.size:
        raise PyVoxStatError(
            f"The two grids must have the same voxel count, got {values1.size} and {values2.size}"
        )
    if values1.size < 3:
        raise PyVoxStatError(
            "Correlation coefficients require at least three voxel values"
        )

    pearson = scipy.stats.pearsonr(values1, values2)
    spearman = scipy.stats.spearmanr(values1, values2)

    logger.info(
        f"Correlation of {values1.size} voxels: pearson={pearson[0]:.4f}, spearman={spearman[0]:.4f}"
    )

    return CorrelationResult(
        pearson=float(pearson[0]),
        pearson_p_value=float(pearson[1]),
        spearman=float(spearman[0]),
        spearman_p_value=float(spearman[1]),
        count=int(values1.size),
    )


def match_structure(template: VoxelGrid, source: VoxelGrid) -> VoxelGrid:
    """Sample the values of source on the voxel structure of template

    :return:
        A copy of template in which every valued voxel holds the value of
        source at the same key, or no value if source has none there.
    :rtype: VoxelGrid
    """
    matched = template.copy()
    for key, _ in matched.items():
        matched.set_value(key, source.get_value(key))
    matched.refresh_statistics()
    return matched
