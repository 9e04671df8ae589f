from .basin import AuxiliaryGrid
from .basin import Basin
from .basin import PourPoint
from .compile import compile_basin_stats
from .config import Config
from .flow import FlowGraph
from .persistence import completed_basin_ids
from .persistence import load_basin
from .persistence import save_basin
from .pipeline import ProcessingResult
from .pipeline import process_basin
from .pipeline import process_river_basins
from .segments import segment_network
from .stream import StreamNetwork

__all__ = [
    "AuxiliaryGrid",
    "Basin",
    "Config",
    "FlowGraph",
    "PourPoint",
    "ProcessingResult",
    "StreamNetwork",
    "compile_basin_stats",
    "completed_basin_ids",
    "load_basin",
    "process_basin",
    "process_river_basins",
    "save_basin",
    "segment_network",
]
