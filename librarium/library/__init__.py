"""
Library subsystem exports.
"""

from .activity import ActivityItem, ActivityType, build_activity_feed
from .error_logging import ErrorLogger, session_logger
from .errors import (
    ErrorBuilder,
    ErrorCategory,
    ErrorOptions,
    ErrorSeverity,
    ProviderResult,
    ServiceError,
    ServiceErrorType,
    ServiceResult,
    StandardError,
    StoreErrorCode,
    StoreResult,
    build_error,
    classify_exception,
    run_classified,
    run_classified_async,
)
from .events import EventLog
from .filtering import calculate_progress, filter_and_sort_books
from .indexing import BookIndexer, WhooshBookIndexer
from .job_queue import (
    MaintenanceQueue,
    QueuedStatisticsRefresher,
    WorkerConfig,
    run_retention_sweep,
    run_statistics_refresh,
)
from .messages import (
    GeminiTextGenerator,
    MessageContext,
    PersonalizedMessage,
    PersonalizedMessageService,
    TextGenerator,
)
from .models import (
    Book,
    BookDraft,
    BookEvent,
    BookUpdate,
    CommentPayload,
    EventType,
    ManualUpdatePayload,
    PendingEvent,
    Progress,
    ProgressUpdatePayload,
    RatingAddedPayload,
    ReadingState,
    ReviewPayload,
    StateChangePayload,
    Statistics,
)
from .provider import LibraryProvider
from .repository import BookRepository, StatisticsRepository
from .service import LibraryService
from .state_machine import allowed_transitions, can_transition, plan_manual_override
from .statistics import compute_statistics
from .store import (
    SERVER_TIMESTAMP,
    CancellationToken,
    DocumentStore,
    InMemoryDocumentStore,
    Query,
    SqlAlchemyDocumentStore,
    Subscription,
    WriteBatch,
)

__all__ = [
    "ActivityItem",
    "ActivityType",
    "Book",
    "BookDraft",
    "BookEvent",
    "BookIndexer",
    "BookRepository",
    "BookUpdate",
    "CancellationToken",
    "CommentPayload",
    "DocumentStore",
    "ErrorBuilder",
    "ErrorCategory",
    "ErrorLogger",
    "ErrorOptions",
    "ErrorSeverity",
    "EventLog",
    "EventType",
    "GeminiTextGenerator",
    "InMemoryDocumentStore",
    "LibraryProvider",
    "LibraryService",
    "MaintenanceQueue",
    "ManualUpdatePayload",
    "MessageContext",
    "PendingEvent",
    "PersonalizedMessage",
    "PersonalizedMessageService",
    "Progress",
    "ProgressUpdatePayload",
    "ProviderResult",
    "Query",
    "QueuedStatisticsRefresher",
    "RatingAddedPayload",
    "ReadingState",
    "ReviewPayload",
    "SERVER_TIMESTAMP",
    "ServiceError",
    "ServiceErrorType",
    "ServiceResult",
    "SqlAlchemyDocumentStore",
    "StandardError",
    "StateChangePayload",
    "Statistics",
    "StatisticsRepository",
    "StoreErrorCode",
    "StoreResult",
    "Subscription",
    "TextGenerator",
    "WhooshBookIndexer",
    "WorkerConfig",
    "WriteBatch",
    "allowed_transitions",
    "build_activity_feed",
    "build_error",
    "calculate_progress",
    "can_transition",
    "classify_exception",
    "compute_statistics",
    "filter_and_sort_books",
    "plan_manual_override",
    "run_classified",
    "run_classified_async",
    "run_retention_sweep",
    "run_statistics_refresh",
    "session_logger",
]
