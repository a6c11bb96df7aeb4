import enum
import math
import typing


class CellState(enum.Enum):
    """Which of the two payloads of a VoxelCell are currently present"""

    EMPTY = 0
    RAW = 1
    AGGREGATED = 2
    AGGREGATED_WITH_RAW = 3


class VoxelCell:
    """The unit of storage in a VoxelGrid

    A cell collects the raw scalar samples binned into it and, once an
    aggregation or transform pass has run, a single reduced value.
    NaN is never stored: NaN samples are dropped and assigning a NaN
    value marks the value as absent.
    """

    __slots__ = ("raw_samples", "_value")

    def __init__(
        self,
        raw_samples: typing.Optional[typing.Iterable[float]] = None,
        value: typing.Optional[float] = None,
    ):
        self.raw_samples = []
        if raw_samples is not None:
            self.extend(raw_samples)
        self._value = None
        self.value = value

    @property
    def value(self) -> typing.Optional[float]:
        return self._value

    @value.setter
    def value(self, value):
        if value is None or math.isnan(value):
            self._value = None
        else:
            self._value = float(value)

    @property
    def has_value(self) -> bool:
        return self._value is not None

    @property
    def sample_count(self) -> int:
        return len(self.raw_samples)

    @property
    def state(self) -> CellState:
        if self._value is None:
            return CellState.RAW if self.raw_samples else CellState.EMPTY
        if self.raw_samples:
            return CellState.AGGREGATED_WITH_RAW
        return CellState.AGGREGATED

    def add(self, sample: float) -> bool:
        """Append a raw sample, returns False if it was dropped for being NaN"""
        if math.isnan(sample):
            return False
        self.raw_samples.append(float(sample))
        return True

    def extend(self, samples: typing.Iterable[float]) -> int:
        """Append several raw samples, returns the number actually added"""
        return sum(self.add(s) for s in samples)

    def assign(self, value):
        """Set a reduced value that is no longer linked to the raw samples"""
        self.value = value
        self.raw_samples = []

    def clear(self):
        self.raw_samples = []
        self._value = None

    def copy(self):
        cell = VoxelCell()
        cell.raw_samples = list(self.raw_samples)
        cell._value = self._value
        return cell

    def __repr__(self):
        return (
            f"VoxelCell(state={self.state.name}, value={self._value}, "
            f"samples={len(self.raw_samples)})"
        )
