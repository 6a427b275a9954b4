from datetime import datetime


class PipelineError(Exception):
    pass


class StageFailedError(PipelineError):
    def __init__(
        self,
        *,
        execution_id: str,
        pipeline_kind: str,
        stage: str,
        started_at: datetime,
        completed_at: datetime,
        cause: Exception,
    ) -> None:
        super().__init__(f"{pipeline_kind} stage '{stage}' failed: {cause}")
        self.execution_id = execution_id
        self.pipeline_kind = pipeline_kind
        self.stage = stage
        self.started_at = started_at
        self.completed_at = completed_at


class ValidationFailedError(PipelineError):
    def __init__(self, report) -> None:
        super().__init__(f"validation failed with {len(report.errors)} errors")
        self.report = report


class RuleConfigurationError(PipelineError, ValueError):
    pass


class UnsupportedFormatError(PipelineError):
    pass


class ConnectorNotFoundError(PipelineError, LookupError):
    pass


class JobDefinitionError(PipelineError, ValueError):
    pass
