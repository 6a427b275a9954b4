from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
import re
from typing import Any, ClassVar, Literal

from pipeline_orchestrator.errors import RuleConfigurationError


Row = dict[str, Any]
Severity = Literal["error", "warning", "info"]
FieldType = Literal["string", "number", "boolean", "date", "object", "array"]
ErrorHandling = Literal["stop", "skip", "log"]
ExecutionStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
StageStatus = Literal["pending", "running", "completed", "failed", "skipped"]

SEVERITIES: tuple[str, ...] = ("error", "warning", "info")
FIELD_TYPES: tuple[str, ...] = ("string", "number", "boolean", "date", "object", "array")
ERROR_HANDLING_POLICIES: tuple[str, ...] = ("stop", "skip", "log")


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass
class DataSource:
    type: str
    location: str
    credentials: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    # Inline payload for sources whose location is "inline".
    content: Any = None


@dataclass
class SchemaField:
    name: str
    type: FieldType
    required: bool = False


@dataclass
class DataSchema:
    fields: list[SchemaField] = field(default_factory=list)
    primary_key: list[str] | None = None

    def field_names(self) -> list[str]:
        return [schema_field.name for schema_field in self.fields]


@dataclass
class DataFormat:
    type: str
    encoding: str = "utf-8"
    delimiter: str = ","
    headers: bool = True
    schema: DataSchema | None = None


@dataclass
class DatasetMetadata:
    created_at: datetime
    updated_at: datetime
    row_count: int = 0
    size_bytes: int = 0
    checksum: str | None = None
    tags: list[str] = field(default_factory=list)


@dataclass
class Dataset:
    id: str
    name: str
    source: DataSource
    format: DataFormat
    metadata: DatasetMetadata
    schema: DataSchema | None = None
    rows: list[Row] | None = None
    location: str | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "id" and "id" in self.__dict__:
            raise AttributeError("dataset id cannot be reassigned")
        super().__setattr__(name, value)


@dataclass(frozen=True)
class DatasetPreview:
    dataset_id: str
    rows: list[Row]
    total_rows: int
    schema: DataSchema | None


def _require_order(order: object, rule_type: str) -> None:
    if isinstance(order, bool) or not isinstance(order, int):
        raise RuleConfigurationError(f"{rule_type} rule order must be an integer, got {order!r}")


def _require_callable(value: object, rule_type: str, attribute: str) -> None:
    if not callable(value):
        raise RuleConfigurationError(f"{rule_type} rule requires a callable '{attribute}'")


@dataclass(frozen=True)
class MapRule:
    mapper: Callable[[Row], Any]
    order: int = 0
    config: dict[str, Any] = field(default_factory=dict)

    type: ClassVar[str] = "map"

    def __post_init__(self) -> None:
        _require_order(self.order, self.type)
        _require_callable(self.mapper, self.type, "mapper")


@dataclass(frozen=True)
class FilterRule:
    predicate: Callable[[Row], Any]
    order: int = 0
    config: dict[str, Any] = field(default_factory=dict)

    type: ClassVar[str] = "filter"

    def __post_init__(self) -> None:
        _require_order(self.order, self.type)
        _require_callable(self.predicate, self.type, "predicate")


@dataclass(frozen=True)
class _RowSetRule:
    handler: Callable[[list[Row]], Any] | None = None
    order: int = 0
    config: dict[str, Any] = field(default_factory=dict)

    type: ClassVar[str] = "rowset"

    def __post_init__(self) -> None:
        _require_order(self.order, self.type)
        if self.handler is not None:
            _require_callable(self.handler, self.type, "handler")


@dataclass(frozen=True)
class AggregateRule(_RowSetRule):
    type: ClassVar[str] = "aggregate"


@dataclass(frozen=True)
class JoinRule(_RowSetRule):
    type: ClassVar[str] = "join"


@dataclass(frozen=True)
class PivotRule(_RowSetRule):
    type: ClassVar[str] = "pivot"


@dataclass(frozen=True)
class CustomRule(_RowSetRule):
    type: ClassVar[str] = "custom"

    def __post_init__(self) -> None:
        _require_order(self.order, self.type)
        _require_callable(self.handler, self.type, "handler")


TransformRule = MapRule | FilterRule | AggregateRule | JoinRule | PivotRule | CustomRule


def _require_severity(severity: object, rule_name: str) -> None:
    if severity not in SEVERITIES:
        raise RuleConfigurationError(f"{rule_name} rule has unknown severity {severity!r}")


@dataclass(frozen=True)
class RequiredRule:
    field: str
    severity: Severity = "error"

    name: ClassVar[str] = "required"

    def __post_init__(self) -> None:
        _require_severity(self.severity, self.name)


@dataclass(frozen=True)
class TypeRule:
    field: str
    expected: FieldType
    severity: Severity = "error"

    name: ClassVar[str] = "type"

    def __post_init__(self) -> None:
        _require_severity(self.severity, self.name)
        if self.expected not in FIELD_TYPES:
            raise RuleConfigurationError(f"type rule has unknown expected type {self.expected!r}")


@dataclass(frozen=True)
class RangeRule:
    field: str
    minimum: float | None = None
    maximum: float | None = None
    severity: Severity = "error"

    name: ClassVar[str] = "range"

    def __post_init__(self) -> None:
        _require_severity(self.severity, self.name)
        if self.minimum is None and self.maximum is None:
            raise RuleConfigurationError("range rule requires a minimum or a maximum")
        if self.minimum is not None and self.maximum is not None and self.minimum > self.maximum:
            raise RuleConfigurationError("range rule minimum is greater than maximum")


@dataclass(frozen=True)
class PatternRule:
    field: str
    pattern: str
    severity: Severity = "error"

    name: ClassVar[str] = "pattern"

    def __post_init__(self) -> None:
        _require_severity(self.severity, self.name)
        try:
            re.compile(self.pattern)
        except re.error as exc:
            raise RuleConfigurationError(f"pattern rule has invalid pattern: {exc}") from exc


@dataclass(frozen=True)
class EnumRule:
    field: str
    allowed: tuple[Any, ...]
    severity: Severity = "error"

    name: ClassVar[str] = "enum"

    def __post_init__(self) -> None:
        _require_severity(self.severity, self.name)
        if not self.allowed:
            raise RuleConfigurationError("enum rule requires at least one allowed value")


@dataclass(frozen=True)
class CustomCheckRule:
    # Returns a falsy value when the row passes, or True/a message when it does not.
    check: Callable[[Row], Any]
    field: str | None = None
    severity: Severity = "error"
    label: str = "custom"

    name: ClassVar[str] = "custom"

    def __post_init__(self) -> None:
        _require_severity(self.severity, self.name)
        if not callable(self.check):
            raise RuleConfigurationError("custom rule requires a callable 'check'")


ValidationRule = RequiredRule | TypeRule | RangeRule | PatternRule | EnumRule | CustomCheckRule


@dataclass(frozen=True)
class ValidationSchema:
    rules: list[ValidationRule]
    error_handling: ErrorHandling = "stop"
    max_errors: int | None = None

    def __post_init__(self) -> None:
        if self.error_handling not in ERROR_HANDLING_POLICIES:
            raise RuleConfigurationError(f"unknown error handling policy {self.error_handling!r}")
        if self.max_errors is not None and self.max_errors < 0:
            raise RuleConfigurationError("max_errors must not be negative")


@dataclass(frozen=True)
class ValidationViolation:
    rule: str
    message: str
    row: int | None = None
    field: str | None = None
    value: Any = None


@dataclass(frozen=True)
class ValidationWarning:
    message: str
    severity: Severity = "warning"
    row: int | None = None
    field: str | None = None


@dataclass
class ValidationSummary:
    total_records: int = 0
    valid_records: int = 0
    invalid_records: int = 0
    skipped_records: int = 0


@dataclass
class ValidationReport:
    valid: bool = True
    errors: list[ValidationViolation] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)
    summary: ValidationSummary = field(default_factory=ValidationSummary)


@dataclass
class DeploymentTarget:
    type: str
    environment: str
    location: str
    credentials: dict[str, Any] | None = None
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeploymentStatus:
    deployed: bool
    target: DeploymentTarget
    records_deployed: int | None = None
    deployment_time_ms: float | None = None
    rollback_available: bool | None = None
    error: Exception | None = None


@dataclass
class StageExecution:
    name: str
    status: StageStatus = "pending"
    started_at: datetime | None = None
    completed_at: datetime | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
    error: Exception | None = None

    @property
    def duration_ms(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000


@dataclass
class ExecutionProgress:
    current: int
    total: int
    stage: str
    message: str | None = None


@dataclass
class PipelineResults:
    dataset: Dataset
    validation_report: ValidationReport | None = None
    transformation_metrics: dict[str, Any] | None = None
    deployment_status: DeploymentStatus | None = None


@dataclass
class PipelineExecution:
    id: str
    pipeline_kind: str
    progress: ExecutionProgress
    status: ExecutionStatus = "pending"
    stages: list[StageExecution] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    error: Exception | None = None
    results: PipelineResults | None = None


@dataclass(frozen=True)
class ActionRecord:
    agent: str
    system_targeted: str
    action_type: str
    record_affected: str
    payload_summary: dict[str, Any]
    response_confirmation: str
    status: str
