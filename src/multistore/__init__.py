"""Capability-negotiated storage providers with change detection and batch object operations."""

from multistore._batch import (
    BatchSummary,
    ObjectClient,
    ObjectPage,
    batch_object_operation,
    copy_directory,
    copy_object,
    delete_directory,
    move_directory,
    move_object,
)
from multistore._cancellation import (
    ALREADY_CANCELLED,
    NEVER_CANCELLED,
    CancellationToken,
    CancellationTokenSource,
    from_future,
    to_event,
    to_future,
)
from multistore._capabilities import OPTIONAL_OPERATIONS, Capability, CapabilitySet, required_capability
from multistore._changes import DetectedChanges, Reorder, detect_changes
from multistore._config import ProfilesConfig, ProviderProfile
from multistore._entry_id import EntryIdMap, generate_entry_id, is_valid_entry_id
from multistore._errors import (
    AlreadyExists,
    CancellationError,
    CapabilityNotSupported,
    ConnectionFailed,
    InvalidPath,
    NotFound,
    PermissionDenied,
    ProviderError,
)
from multistore._executor import ExecutionReport, OperationFailure, execute_plan, reconcile
from multistore._models import Entry, EntryMetadata, EntryType, ListResult, ProgressEvent
from multistore._operations import (
    CopyOperation,
    CreateOperation,
    DeleteOperation,
    DownloadOperation,
    MoveOperation,
    Operation,
    OperationKind,
    OperationPlan,
    PlanSummary,
    UploadOperation,
)
from multistore._planner import build_operation_plan, find_path_conflicts, validate_operation_plan
from multistore._provider import Provider, paginate
from multistore._registry import ProviderRegistry, ProviderType
from multistore._result import OperationError, OperationResult, OperationStatus
from multistore._retry import DEFAULT_RETRY, NO_RETRY, OBJECT_STORE_RETRY, RetryPolicy, is_transient
from multistore._upload_queue import UploadItem, UploadQueue, UploadStats, UploadStatus
from multistore._uri import ParsedUri, build_uri, entry_to_uri, parent_uri, parse_uri

__version__ = "0.1.0"

__all__ = [
    # Core
    "Provider",
    "ProviderRegistry",
    "ProviderType",
    "paginate",
    # Results
    "OperationResult",
    "OperationStatus",
    "OperationError",
    # Models
    "Entry",
    "EntryMetadata",
    "EntryType",
    "ListResult",
    "ProgressEvent",
    # Capabilities
    "Capability",
    "CapabilitySet",
    "OPTIONAL_OPERATIONS",
    "required_capability",
    # Cancellation
    "CancellationToken",
    "CancellationTokenSource",
    "NEVER_CANCELLED",
    "ALREADY_CANCELLED",
    "from_future",
    "to_future",
    "to_event",
    # Identity & change detection
    "EntryIdMap",
    "generate_entry_id",
    "is_valid_entry_id",
    "DetectedChanges",
    "Reorder",
    "detect_changes",
    # Planning & execution
    "Operation",
    "OperationKind",
    "CreateOperation",
    "DeleteOperation",
    "MoveOperation",
    "CopyOperation",
    "DownloadOperation",
    "UploadOperation",
    "OperationPlan",
    "PlanSummary",
    "build_operation_plan",
    "validate_operation_plan",
    "find_path_conflicts",
    "ExecutionReport",
    "OperationFailure",
    "execute_plan",
    "reconcile",
    # Batch object operations
    "ObjectClient",
    "ObjectPage",
    "BatchSummary",
    "copy_object",
    "move_object",
    "batch_object_operation",
    "copy_directory",
    "move_directory",
    "delete_directory",
    # Retry
    "RetryPolicy",
    "DEFAULT_RETRY",
    "OBJECT_STORE_RETRY",
    "NO_RETRY",
    "is_transient",
    # Upload queue
    "UploadQueue",
    "UploadItem",
    "UploadStats",
    "UploadStatus",
    # URIs
    "ParsedUri",
    "build_uri",
    "parse_uri",
    "parent_uri",
    "entry_to_uri",
    # Config
    "ProviderProfile",
    "ProfilesConfig",
    # Errors
    "ProviderError",
    "NotFound",
    "AlreadyExists",
    "PermissionDenied",
    "InvalidPath",
    "ConnectionFailed",
    "CancellationError",
    "CapabilityNotSupported",
    # Version
    "__version__",
]
