"""
Result envelopes and error classification shared by every layer.

Three result shapes stack on top of each other:

* ``StoreResult``: storage layer, raw string error plus a store code.
* ``ServiceResult``: business layer, a typed ``ServiceError``.
* ``ProviderResult``: presentation layer, a fully described ``StandardError``.

Each layer re-classifies the one below it instead of passing raw failures
through. ``StandardError`` values are immutable; ``build_error`` creates one
from an ``ErrorOptions`` record and ``ErrorBuilder`` is fluent sugar on top.
"""

from __future__ import annotations

import secrets
import time
import traceback
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Mapping, Optional, Tuple, TypeVar, Union

from .models import utcnow

T = TypeVar("T")


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    NETWORK = "network"
    AUTHORIZATION = "authorization"
    AUTHENTICATION = "authentication"
    BUSINESS_LOGIC = "business_logic"
    SYSTEM = "system"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class StoreErrorCode(str, Enum):
    NOT_FOUND = "not-found"
    PERMISSION_DENIED = "permission-denied"
    UNAVAILABLE = "unavailable"
    ALREADY_EXISTS = "already-exists"
    INVALID_ARGUMENT = "invalid-argument"
    UNKNOWN = "unknown"


class ServiceErrorType(str, Enum):
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization_error"
    NETWORK = "network_error"
    BUSINESS_RULE = "business_rule_error"
    REPOSITORY = "repository_error"
    EVENT_LOG = "event_log_error"
    UNKNOWN = "unknown_error"


# region Standard error


@dataclass(frozen=True)
class StandardError:
    id: str
    type: str
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    user_message: str
    timestamp: datetime
    recoverable: bool
    retryable: bool
    context: Mapping[str, Any] = field(default_factory=dict)
    original_error: Optional[BaseException] = None
    stack: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "user_message": self.user_message,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "retryable": self.retryable,
            "context": dict(self.context),
        }


_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def generate_error_id() -> str:
    """``err_<epoch millis>_<9 random base36 chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"err_{int(time.time() * 1000)}_{suffix}"


@dataclass(frozen=True)
class ErrorOptions:
    message: str
    type: Optional[str] = None
    category: ErrorCategory = ErrorCategory.UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    user_message: Optional[str] = None
    context: Mapping[str, Any] = field(default_factory=dict)
    original_error: Optional[BaseException] = None
    recoverable: bool = True
    retryable: bool = False


def build_error(
    options: ErrorOptions,
    error_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> StandardError:
    stack = None
    if options.original_error is not None and options.original_error.__traceback__ is not None:
        stack = "".join(
            traceback.format_exception(
                type(options.original_error),
                options.original_error,
                options.original_error.__traceback__,
            )
        )
    return StandardError(
        id=error_id or generate_error_id(),
        type=options.type or options.category.value,
        category=options.category,
        severity=options.severity,
        message=options.message,
        user_message=options.user_message or options.message,
        timestamp=timestamp or utcnow(),
        recoverable=options.recoverable,
        retryable=options.retryable,
        context=dict(options.context),
        original_error=options.original_error,
        stack=stack,
    )


class ErrorBuilder:
    """
    Immutable fluent builder: every ``with_*`` call returns a new builder.

        error = (
            ErrorBuilder("Repository access denied")
            .with_category(ErrorCategory.AUTHORIZATION)
            .with_severity(ErrorSeverity.HIGH)
            .not_recoverable()
            .build()
        )
    """

    def __init__(self, message: str, options: Optional[ErrorOptions] = None):
        self.options = options or ErrorOptions(message=message)

    def _with(self, **changes: Any) -> "ErrorBuilder":
        return ErrorBuilder(self.options.message, replace(self.options, **changes))

    def with_type(self, error_type: str) -> "ErrorBuilder":
        return self._with(type=error_type)

    def with_category(self, category: ErrorCategory) -> "ErrorBuilder":
        return self._with(category=category)

    def with_severity(self, severity: ErrorSeverity) -> "ErrorBuilder":
        return self._with(severity=severity)

    def with_user_message(self, user_message: str) -> "ErrorBuilder":
        return self._with(user_message=user_message)

    def with_context(self, context: Mapping[str, Any]) -> "ErrorBuilder":
        merged = dict(self.options.context)
        merged.update(context)
        return self._with(context=merged)

    def with_original_error(self, error: BaseException) -> "ErrorBuilder":
        return self._with(original_error=error)

    def with_recoverable(self, recoverable: bool) -> "ErrorBuilder":
        return self._with(recoverable=recoverable)

    def with_retryable(self, retryable: bool) -> "ErrorBuilder":
        return self._with(retryable=retryable)

    def not_recoverable(self) -> "ErrorBuilder":
        return self.with_recoverable(False)

    def retryable(self) -> "ErrorBuilder":
        return self.with_retryable(True)

    def build(self) -> StandardError:
        return build_error(self.options)


# endregion

# region Result envelopes


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    code: Optional[StoreErrorCode] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "StoreResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, code: StoreErrorCode = StoreErrorCode.UNKNOWN) -> "StoreResult[T]":
        return cls(success=False, error=error, code=code)


@dataclass(frozen=True)
class ServiceError:
    type: ServiceErrorType
    message: str
    detail: Optional[str] = None
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[ServiceError] = None
    warnings: Tuple[ServiceError, ...] = ()

    @classmethod
    def ok(cls, data: Optional[T] = None, warnings: Tuple[ServiceError, ...] = ()) -> "ServiceResult[T]":
        return cls(success=True, data=data, warnings=tuple(warnings))

    @classmethod
    def fail(cls, error: ServiceError) -> "ServiceResult[T]":
        return cls(success=False, error=error)

    @property
    def complete(self) -> bool:
        """True when the operation succeeded with no secondary failures."""
        return self.success and not self.warnings


@dataclass(frozen=True)
class ProviderResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[StandardError] = None
    warnings: Tuple[StandardError, ...] = ()

    @classmethod
    def ok(cls, data: Optional[T] = None, warnings: Tuple[StandardError, ...] = ()) -> "ProviderResult[T]":
        return cls(success=True, data=data, warnings=tuple(warnings))

    @classmethod
    def fail(cls, error: StandardError) -> "ProviderResult[T]":
        return cls(success=False, error=error)


# endregion

# region Classification

# (severity, recoverable, retryable, user message) per category.
_CATEGORY_DEFAULTS: Dict[ErrorCategory, Tuple[ErrorSeverity, bool, bool, str]] = {
    ErrorCategory.VALIDATION: (ErrorSeverity.LOW, True, False, "Please check the values you entered."),
    ErrorCategory.NETWORK: (
        ErrorSeverity.MEDIUM,
        True,
        True,
        "Network error. Please check your connection and try again.",
    ),
    ErrorCategory.AUTHORIZATION: (
        ErrorSeverity.HIGH,
        False,
        False,
        "You don't have permission to access this data.",
    ),
    ErrorCategory.AUTHENTICATION: (ErrorSeverity.HIGH, False, False, "Authentication failed."),
    ErrorCategory.BUSINESS_LOGIC: (ErrorSeverity.MEDIUM, True, False, "That action isn't allowed right now."),
    ErrorCategory.SYSTEM: (ErrorSeverity.HIGH, True, True, "An unexpected error occurred. Please try again."),
    ErrorCategory.UNKNOWN: (ErrorSeverity.HIGH, True, True, "An unexpected error occurred. Please try again."),
}


def _builder_for(message: str, category: ErrorCategory) -> ErrorBuilder:
    severity, recoverable, retryable, user_message = _CATEGORY_DEFAULTS[category]
    return (
        ErrorBuilder(message)
        .with_category(category)
        .with_severity(severity)
        .with_user_message(user_message)
        .with_recoverable(recoverable)
        .with_retryable(retryable)
    )


def create_validation_error(
    message: str,
    user_message: Optional[str] = None,
    field_name: Optional[str] = None,
) -> StandardError:
    builder = _builder_for(message, ErrorCategory.VALIDATION).with_type("validation_error")
    if field_name:
        builder = builder.with_context({"field_name": field_name}).with_user_message(
            user_message or f"{field_name}: {message}"
        )
    elif user_message:
        builder = builder.with_user_message(user_message)
    else:
        builder = builder.with_user_message(message)
    return builder.build()


def create_network_error(message: str = "Network error occurred", user_message: Optional[str] = None) -> StandardError:
    builder = _builder_for(message, ErrorCategory.NETWORK).with_type("network_error")
    if user_message:
        builder = builder.with_user_message(user_message)
    return builder.build()


def create_auth_error(message: str, user_message: Optional[str] = None) -> StandardError:
    builder = _builder_for(message, ErrorCategory.AUTHORIZATION).with_type("authorization_error")
    if user_message:
        builder = builder.with_user_message(user_message)
    return builder.build()


def create_business_error(message: str, user_message: Optional[str] = None) -> StandardError:
    return (
        _builder_for(message, ErrorCategory.BUSINESS_LOGIC)
        .with_type("business_rule_error")
        .with_user_message(user_message or message)
        .build()
    )


def create_system_error(message: str, original_error: Optional[BaseException] = None) -> StandardError:
    builder = _builder_for(message, ErrorCategory.SYSTEM).with_type("system_error")
    if original_error is not None:
        builder = builder.with_original_error(original_error)
    return builder.build()


def classify_exception(
    error: Union[BaseException, str],
    context: Optional[Mapping[str, Any]] = None,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
) -> StandardError:
    """Turn an arbitrary raised failure into a StandardError of ``category``."""
    message = error if isinstance(error, str) else (str(error) or type(error).__name__)
    builder = _builder_for(message, category).with_context(context or {})
    if isinstance(error, BaseException):
        builder = builder.with_type(type(error).__name__).with_original_error(error)
    return builder.build()


def service_error_from_store(result: StoreResult[Any], resource: str = "book") -> ServiceError:
    raw = result.error or "Unknown storage error"
    code = result.code or StoreErrorCode.UNKNOWN
    if code == StoreErrorCode.PERMISSION_DENIED:
        return ServiceError(ServiceErrorType.AUTHORIZATION, f"You don't have permission to access this {resource}", raw)
    if code == StoreErrorCode.UNAVAILABLE:
        return ServiceError(
            ServiceErrorType.NETWORK,
            "Network error. Please check your connection and try again.",
            raw,
        )
    if code == StoreErrorCode.NOT_FOUND:
        return ServiceError(ServiceErrorType.NOT_FOUND, f"{resource.capitalize()} not found", raw)
    if code in (StoreErrorCode.INVALID_ARGUMENT, StoreErrorCode.ALREADY_EXISTS):
        return ServiceError(ServiceErrorType.VALIDATION, raw, raw)
    return ServiceError(ServiceErrorType.REPOSITORY, f"Database error: {raw}", raw)


_SERVICE_TYPE_CATEGORY: Dict[ServiceErrorType, ErrorCategory] = {
    ServiceErrorType.VALIDATION: ErrorCategory.VALIDATION,
    ServiceErrorType.NOT_FOUND: ErrorCategory.VALIDATION,
    ServiceErrorType.AUTHORIZATION: ErrorCategory.AUTHORIZATION,
    ServiceErrorType.NETWORK: ErrorCategory.NETWORK,
    ServiceErrorType.BUSINESS_RULE: ErrorCategory.BUSINESS_LOGIC,
    ServiceErrorType.REPOSITORY: ErrorCategory.SYSTEM,
    ServiceErrorType.EVENT_LOG: ErrorCategory.SYSTEM,
    ServiceErrorType.UNKNOWN: ErrorCategory.UNKNOWN,
}


def classify_service_error(error: ServiceError, context: Optional[Mapping[str, Any]] = None) -> StandardError:
    category = _SERVICE_TYPE_CATEGORY[error.type]
    builder = (
        _builder_for(error.detail or error.message, category)
        .with_type(error.type.value)
        .with_context(error.context)
        .with_context(context or {})
    )
    if error.type in (ServiceErrorType.VALIDATION, ServiceErrorType.NOT_FOUND, ServiceErrorType.BUSINESS_RULE):
        builder = builder.with_user_message(error.message)
    if error.type == ServiceErrorType.NOT_FOUND:
        builder = builder.with_severity(ErrorSeverity.LOW)
    if error.type == ServiceErrorType.EVENT_LOG:
        builder = builder.with_severity(ErrorSeverity.LOW).with_user_message(error.message)
    return builder.build()


def classify_store_error(result: StoreResult[Any], resource: str = "book") -> StandardError:
    return classify_service_error(service_error_from_store(result, resource))


def classify_warning(warning: ServiceError, context: Optional[Mapping[str, Any]] = None) -> StandardError:
    """A secondary failure next to a successful mutation is always LOW."""
    error = classify_service_error(warning, context)
    return replace(error, severity=ErrorSeverity.LOW, user_message=warning.message)


def present(result: ServiceResult[T], context: Optional[Mapping[str, Any]] = None) -> ProviderResult[T]:
    """Re-classify a business-layer result for the presentation layer."""
    warnings = tuple(classify_warning(w, context) for w in result.warnings)
    if result.success:
        return ProviderResult.ok(result.data, warnings=warnings)
    assert result.error is not None
    return ProviderResult.fail(classify_service_error(result.error, context))


# endregion

# region Wrappers


def run_classified(
    operation: Callable[[], T],
    context: Optional[Mapping[str, Any]] = None,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    error_logger: Optional[Any] = None,
) -> ProviderResult[T]:
    try:
        return ProviderResult.ok(operation())
    except Exception as exc:  # noqa: BLE001
        error = classify_exception(exc, context, category)
        if error_logger is not None:
            error_logger.log_error(error, context)
        return ProviderResult.fail(error)


async def run_classified_async(
    operation: Callable[[], Awaitable[T]],
    context: Optional[Mapping[str, Any]] = None,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    error_logger: Optional[Any] = None,
) -> ProviderResult[T]:
    try:
        return ProviderResult.ok(await operation())
    except Exception as exc:  # noqa: BLE001
        error = classify_exception(exc, context, category)
        if error_logger is not None:
            error_logger.log_error(error, context)
        return ProviderResult.fail(error)


# endregion
