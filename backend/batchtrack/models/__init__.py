from .batch import Batch, BatchStatus, ProcessType
from .production_log import ProductionLog, LogType, ProductionStage
