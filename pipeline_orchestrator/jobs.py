from dataclasses import dataclass
import json
from pathlib import Path
from typing import Any

from pipeline_orchestrator.errors import JobDefinitionError
from pipeline_orchestrator.schemas import (
    AggregateRule,
    DataFormat,
    DataSource,
    DeploymentTarget,
    EnumRule,
    FilterRule,
    JoinRule,
    MapRule,
    PatternRule,
    PipelineResults,
    PivotRule,
    RangeRule,
    RequiredRule,
    TransformRule,
    TypeRule,
    ValidationRule,
    ValidationSchema,
)
from pipeline_orchestrator.step_logic import mapper_from_config, predicate_from_config


@dataclass(frozen=True)
class PipelineJob:
    name: str | None
    source: DataSource
    data_format: DataFormat
    transform_rules: list[TransformRule]
    validation_schema: ValidationSchema
    target: DeploymentTarget
    stop_on_validation_error: bool = False


def load_job(path: Path) -> PipelineJob:
    if not path.exists():
        raise FileNotFoundError(f"job file not found: {path}")
    with path.open("r", encoding="utf-8") as infile:
        try:
            definition = json.load(infile)
        except json.JSONDecodeError as exc:
            raise JobDefinitionError(f"job file is not valid JSON: {exc}") from exc
    return parse_job(definition)


def parse_job(definition: dict[str, Any]) -> PipelineJob:
    if not isinstance(definition, dict):
        raise JobDefinitionError("job definition must be a JSON object")
    try:
        return PipelineJob(
            name=definition.get("name"),
            source=DataSource(**_section(definition, "source")),
            data_format=DataFormat(**_section(definition, "format")),
            transform_rules=[transform_rule_from_dict(rule) for rule in definition.get("transform_rules", [])],
            validation_schema=validation_schema_from_dict(definition.get("validation", {"rules": []})),
            target=DeploymentTarget(**_section(definition, "target")),
            stop_on_validation_error=bool(definition.get("stop_on_validation_error", False)),
        )
    except JobDefinitionError:
        raise
    except (TypeError, ValueError) as exc:
        raise JobDefinitionError(str(exc)) from exc


def _section(definition: dict[str, Any], key: str) -> dict[str, Any]:
    section = definition.get(key)
    if not isinstance(section, dict):
        raise JobDefinitionError(f"job definition requires a '{key}' object")
    return section


_ROW_SET_RULES = {"aggregate": AggregateRule, "join": JoinRule, "pivot": PivotRule}


def transform_rule_from_dict(definition: dict[str, Any]) -> TransformRule:
    if not isinstance(definition, dict):
        raise JobDefinitionError(f"transform rule must be an object, got {definition!r}")
    rule_type = definition.get("type")
    order = definition.get("order", 0)
    config = dict(definition.get("config", {}))

    if rule_type == "map":
        return MapRule(mapper=mapper_from_config(config), order=order, config=config)
    if rule_type == "filter":
        return FilterRule(predicate=predicate_from_config(config), order=order, config=config)
    if rule_type in _ROW_SET_RULES:
        return _ROW_SET_RULES[rule_type](order=order, config=config)
    if rule_type == "custom":
        raise JobDefinitionError("custom transform rules need a handler and cannot be declared in a job file")
    raise JobDefinitionError(f"unknown transform rule type: {rule_type!r}")


def validation_rule_from_dict(definition: dict[str, Any]) -> ValidationRule:
    if not isinstance(definition, dict):
        raise JobDefinitionError(f"validation rule must be an object, got {definition!r}")
    rule_type = definition.get("type")
    field_name = definition.get("field")
    severity = definition.get("severity", "error")
    config = definition.get("config", {})
    if not isinstance(config, dict):
        raise JobDefinitionError(f"{rule_type} validation rule config must be an object")

    if rule_type != "custom" and not field_name:
        raise JobDefinitionError(f"{rule_type} validation rule requires a 'field'")

    if rule_type == "required":
        return RequiredRule(field=field_name, severity=severity)
    if rule_type == "type":
        return TypeRule(field=field_name, expected=config.get("expected", "string"), severity=severity)
    if rule_type == "range":
        return RangeRule(field=field_name, minimum=config.get("min"), maximum=config.get("max"), severity=severity)
    if rule_type == "pattern":
        return PatternRule(field=field_name, pattern=config.get("pattern", ""), severity=severity)
    if rule_type == "enum":
        return EnumRule(field=field_name, allowed=tuple(config.get("values", ())), severity=severity)
    if rule_type == "custom":
        raise JobDefinitionError("custom validation rules need a check and cannot be declared in a job file")
    raise JobDefinitionError(f"unknown validation rule type: {rule_type!r}")


def validation_schema_from_dict(definition: dict[str, Any]) -> ValidationSchema:
    if not isinstance(definition, dict):
        raise JobDefinitionError("job definition 'validation' must be an object")
    return ValidationSchema(
        rules=[validation_rule_from_dict(rule) for rule in definition.get("rules", [])],
        error_handling=definition.get("error_handling", "stop"),
        max_errors=definition.get("max_errors"),
    )


async def run_job(orchestrator, job: PipelineJob, *, stop_on_validation_error: bool | None = None) -> PipelineResults:
    stop = job.stop_on_validation_error if stop_on_validation_error is None else stop_on_validation_error
    try:
        return await orchestrator.execute_pipeline(
            job.source,
            job.data_format,
            job.transform_rules,
            job.validation_schema,
            job.target,
            name=job.name,
            stop_on_validation_error=stop,
        )
    finally:
        # Let subscribers such as the execution ledger finish before the loop closes.
        await orchestrator.context.events.drain()
        orchestrator.context.connectors.close()
