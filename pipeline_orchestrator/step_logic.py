from collections.abc import Callable
import csv
from datetime import date, datetime
import hashlib
import inspect
import io
import json
import re
from typing import Any

from pipeline_orchestrator.errors import RuleConfigurationError, UnsupportedFormatError
from pipeline_orchestrator.schemas import (
    CustomCheckRule,
    DataFormat,
    DataSchema,
    EnumRule,
    FilterRule,
    MapRule,
    PatternRule,
    RangeRule,
    RequiredRule,
    Row,
    SchemaField,
    TransformRule,
    TypeRule,
    ValidationRule,
    ValidationViolation,
)


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def parse_rows(raw: Any, data_format: DataFormat) -> list[Row]:
    if isinstance(raw, bytes):
        raw = raw.decode(data_format.encoding)

    if isinstance(raw, dict):
        return [raw]

    if isinstance(raw, list):
        for index, row in enumerate(raw):
            if not isinstance(row, dict):
                raise ValueError(f"row {index} is not an object")
        return list(raw)

    if not isinstance(raw, str):
        raise ValueError(f"cannot parse payload of type {type(raw).__name__}")

    format_type = data_format.type.lower()
    if format_type == "json":
        return parse_rows(json.loads(raw), data_format)
    if format_type == "jsonl":
        rows: list[Row] = []
        for line in raw.splitlines():
            line = line.strip()
            if not line:
                continue
            rows.append(json.loads(line))
        return parse_rows(rows, data_format)
    if format_type == "csv":
        return _parse_csv(raw, data_format)
    if format_type == "text":
        return [{"line": line} for line in raw.splitlines() if line.strip()]

    raise UnsupportedFormatError(f"unsupported data format: {data_format.type}")


def _parse_csv(raw: str, data_format: DataFormat) -> list[Row]:
    reader = csv.reader(io.StringIO(raw), delimiter=data_format.delimiter)
    lines = [line for line in reader if line]
    if not lines:
        return []

    if data_format.headers:
        header, body = lines[0], lines[1:]
    else:
        header = [f"column_{index + 1}" for index in range(len(lines[0]))]
        body = lines

    rows: list[Row] = []
    for number, line in enumerate(body, start=2 if data_format.headers else 1):
        if len(line) != len(header):
            raise ValueError(f"csv row {number} has {len(line)} columns, expected {len(header)}")
        rows.append(dict(zip(header, line)))
    return rows


def infer_field_type(value: Any) -> str:
    if value is None:
        return "string"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (datetime, date)):
        return "date"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "string"


def infer_schema(rows: list[Row]) -> DataSchema:
    if not rows:
        return DataSchema(fields=[])

    sample = rows[0]
    return DataSchema(
        fields=[SchemaField(name=key, type=infer_field_type(value), required=True) for key, value in sample.items()]
    )


def serialized_size(rows: list[Row]) -> int:
    return len(json.dumps(rows, default=str).encode("utf-8"))


def checksum(rows: list[Row]) -> str:
    # Sorted keys make the fingerprint independent of column order.
    payload = json.dumps(rows, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


async def apply_transform_rule(rows: list[Row], rule: TransformRule) -> list[Row]:
    if isinstance(rule, MapRule):
        mapped: list[Row] = []
        for row in rows:
            mapped.append(await maybe_await(rule.mapper(row)))
        return mapped

    if isinstance(rule, FilterRule):
        kept: list[Row] = []
        for row in rows:
            if await maybe_await(rule.predicate(row)):
                kept.append(row)
        return kept

    if rule.handler is None:
        return rows
    return list(await maybe_await(rule.handler(rows)))


def matches_type(value: Any, expected: str) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "date":
        if isinstance(value, (datetime, date)):
            return True
        if isinstance(value, str):
            try:
                datetime.fromisoformat(value)
            except ValueError:
                return False
            return True
        return False
    if expected == "object":
        return isinstance(value, dict)
    if expected == "array":
        return isinstance(value, (list, tuple))
    return False


async def evaluate_rule(row: Row, rule: ValidationRule, row_index: int) -> ValidationViolation | None:
    try:
        return await _evaluate_rule(row, rule, row_index)
    except Exception as exc:
        # A broken rule is reported against the row instead of aborting the scan.
        return ValidationViolation(
            rule=rule.name,
            message=f"validation error: {exc}",
            row=row_index,
            field=rule.field,
        )


async def _evaluate_rule(row: Row, rule: ValidationRule, row_index: int) -> ValidationViolation | None:
    if isinstance(rule, CustomCheckRule):
        outcome = await maybe_await(rule.check(row))
        if not outcome:
            return None
        message = outcome if isinstance(outcome, str) else f"{rule.label} check failed"
        value = row.get(rule.field) if rule.field else None
        return ValidationViolation(rule=rule.label, message=message, row=row_index, field=rule.field, value=value)

    value = row.get(rule.field)

    def violation(message: str) -> ValidationViolation:
        return ValidationViolation(rule=rule.name, message=message, row=row_index, field=rule.field, value=value)

    if isinstance(rule, RequiredRule):
        if value is None or (isinstance(value, str) and not value.strip()):
            return violation(f"Field {rule.field} is required")
        return None

    # Absent values are the required rule's concern.
    if value is None:
        return None

    if isinstance(rule, TypeRule):
        if not matches_type(value, rule.expected):
            return violation(f"Field {rule.field} must be of type {rule.expected}")
        return None

    if isinstance(rule, RangeRule):
        if isinstance(value, bool):
            return violation(f"Field {rule.field} must be numeric")
        try:
            number = float(value)
        except (TypeError, ValueError):
            return violation(f"Field {rule.field} must be numeric")
        if rule.minimum is not None and number < rule.minimum:
            return violation(f"Field {rule.field} must be >= {rule.minimum}")
        if rule.maximum is not None and number > rule.maximum:
            return violation(f"Field {rule.field} must be <= {rule.maximum}")
        return None

    if isinstance(rule, PatternRule):
        if re.search(rule.pattern, str(value)) is None:
            return violation(f"Field {rule.field} does not match pattern {rule.pattern}")
        return None

    if isinstance(rule, EnumRule):
        if value not in rule.allowed:
            return violation(f"Field {rule.field} must be one of {list(rule.allowed)}")
        return None

    raise TypeError(f"unsupported validation rule: {type(rule).__name__}")


_CASTS: dict[str, Callable[[Any], Any]] = {
    "int": int,
    "float": float,
    "str": str,
    "bool": lambda value: str(value).strip().lower() in {"1", "true", "yes", "y"},
}

_COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": lambda left, right: left == right,
    "ne": lambda left, right: left != right,
    "gt": lambda left, right: left is not None and left > right,
    "gte": lambda left, right: left is not None and left >= right,
    "lt": lambda left, right: left is not None and left < right,
    "lte": lambda left, right: left is not None and left <= right,
    "in": lambda left, right: left in right,
    "not_in": lambda left, right: left not in right,
    "exists": lambda left, right: left is not None,
    "not_empty": lambda left, right: left is not None and str(left).strip() != "",
}


def mapper_from_config(config: dict[str, Any]) -> Callable[[Row], Row]:
    known = {"rename", "set", "drop", "strip", "lowercase", "cast"}
    unknown = set(config) - known
    if unknown:
        raise RuleConfigurationError(f"map config has unknown keys: {sorted(unknown)}")

    rename: dict[str, str] = dict(config.get("rename", {}))
    assignments: dict[str, Any] = dict(config.get("set", {}))
    drop: list[str] = list(config.get("drop", []))
    strip: list[str] = list(config.get("strip", []))
    lowercase: list[str] = list(config.get("lowercase", []))
    casts: dict[str, str] = dict(config.get("cast", {}))

    for field_name, cast_name in casts.items():
        if cast_name not in _CASTS:
            raise RuleConfigurationError(f"map config has unknown cast {cast_name!r} for {field_name}")

    def mapper(row: Row) -> Row:
        mapped = {rename.get(key, key): value for key, value in row.items() if key not in drop}
        for field_name in strip:
            if isinstance(mapped.get(field_name), str):
                mapped[field_name] = mapped[field_name].strip()
        for field_name in lowercase:
            if isinstance(mapped.get(field_name), str):
                mapped[field_name] = mapped[field_name].lower()
        for field_name, cast_name in casts.items():
            if mapped.get(field_name) is not None:
                mapped[field_name] = _CASTS[cast_name](mapped[field_name])
        mapped.update(assignments)
        return mapped

    return mapper


def predicate_from_config(config: dict[str, Any]) -> Callable[[Row], bool]:
    if "all" in config:
        predicates = [predicate_from_config(condition) for condition in config["all"]]
        return lambda row: all(predicate(row) for predicate in predicates)

    field_name = config.get("field")
    op = config.get("op", "eq")
    if not field_name:
        raise RuleConfigurationError("filter config requires a 'field'")
    if op not in _COMPARISONS:
        raise RuleConfigurationError(f"filter config has unknown op {op!r}")

    compare = _COMPARISONS[op]
    expected = config.get("value")
    return lambda row: compare(row.get(field_name), expected)
