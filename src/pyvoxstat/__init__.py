from pyvoxstat.logger import set_pyvoxstat_logfile, set_pyvoxstat_loglevel
from pyvoxstat.aggregation import AggregationMethod
from pyvoxstat.cell import CellState, VoxelCell
from pyvoxstat.grid import VoxelGrid
from pyvoxstat.transformation import AffineTransformation
from pyvoxstat.comparison import (
    CorrelationResult,
    correlation_coefficients,
    match_structure,
)
from pyvoxstat.util import (
    __version__,
    PyVoxStatError,
    get_num_threads,
    set_num_threads,
)
