from .batch import Batch as Batch
from .batch import BatchProcessor as BatchProcessor
from .bulk import BulkItem as BulkItem
from .bulk import BulkResponse as BulkResponse
from .bulk import Operation as Operation
from .bulk import OperationType as OperationType
from .cluster import Cluster as Cluster
from .completion import CompletionHandle as CompletionHandle
from .config import BatchSettings as BatchSettings
from .config import ClusterSettings as ClusterSettings
from .exceptions import BatchCancelledError as BatchCancelledError
from .exceptions import BatchEncodingError as BatchEncodingError
from .exceptions import ElasticaError as ElasticaError
from .exceptions import HTTPError as HTTPError
from .exceptions import InvalidIdentifierError as InvalidIdentifierError
from .exceptions import ProcessorClosedError as ProcessorClosedError
from .exceptions import ProcessorStateError as ProcessorStateError
from .exceptions import TransportError as TransportError
from .logging import setup_logging as setup_logging
from .script import Script as Script

__all__ = [
    "Batch",
    "BatchProcessor",
    "BulkItem",
    "BulkResponse",
    "Operation",
    "OperationType",
    "Cluster",
    "CompletionHandle",
    "BatchSettings",
    "ClusterSettings",
    "ElasticaError",
    "HTTPError",
    "TransportError",
    "InvalidIdentifierError",
    "BatchCancelledError",
    "BatchEncodingError",
    "ProcessorStateError",
    "ProcessorClosedError",
    "Script",
    "setup_logging",
]
