from .__version__ import __version__
from .catalog import ArtifactNames, ProcessingRecord, Stage, StageCatalog
from .core import BatchResult, ItemResult
from .normalizer import NormalizerConfig

__all__ = [
    "__version__",
    "ArtifactNames",
    "BatchResult",
    "ItemResult",
    "NormalizerConfig",
    "ProcessingRecord",
    "Stage",
    "StageCatalog",
]
