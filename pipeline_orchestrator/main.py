import argparse
import asyncio
import logging
from pathlib import Path

from pipeline_orchestrator.config import get_settings
from pipeline_orchestrator.database import build_session_factory
from pipeline_orchestrator.errors import PipelineError
from pipeline_orchestrator.jobs import load_job, run_job
from pipeline_orchestrator.pipeline import build_orchestrator
from pipeline_orchestrator.scheduler import start_scheduler


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the data pipeline orchestrator")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="run one pipeline job")
    run_parser.add_argument("--job", required=True, help="Path to a JSON job definition")
    run_parser.add_argument(
        "--stop-on-validation-error",
        action="store_true",
        default=None,
        help="skip deployment when validation fails (overrides the job file)",
    )

    schedule_parser = subparsers.add_parser("schedule", help="run a pipeline job daily")
    schedule_parser.add_argument("--job", required=True, help="Path to a JSON job definition")
    schedule_parser.add_argument("--run-now", action="store_true", help="also run once immediately")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    session_factory = build_session_factory(settings.database_url)
    job_path = Path(args.job)
    if args.command == "schedule":
        start_scheduler(settings, session_factory, job_path, run_now=args.run_now)
        return

    orchestrator = build_orchestrator(settings, session_factory)
    try:
        job = load_job(job_path)
        results = asyncio.run(run_job(orchestrator, job, stop_on_validation_error=args.stop_on_validation_error))
    except (PipelineError, OSError) as exc:
        print(f"status=failed error={exc}")
        raise SystemExit(1) from exc

    report = results.validation_report
    deployment = results.deployment_status
    deployed = bool(deployment and deployment.deployed)
    print(
        "dataset={dataset} name={name} rows={rows} valid={valid} invalid={invalid} deployed={deployed} records_deployed={records} status={status}".format(
            dataset=results.dataset.id,
            name=results.dataset.name,
            rows=results.dataset.metadata.row_count,
            valid=report.valid if report else None,
            invalid=report.summary.invalid_records if report else 0,
            deployed=deployed,
            records=deployment.records_deployed if deployment else 0,
            status="succeeded" if deployed else "failed",
        )
    )
    if not deployed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
