"""appgen command-line interface.

Commands:
    appgen estimate PHASE_JSON      # complexity + token budget for a phase
    appgen split PHASE_JSON         # child phases as JSON
    appgen detect RESPONSE_FILE     # truncation analysis of a saved response
    appgen generate PROMPT          # run the pipeline, print SSE lines
                                    #   (--dry-run RESPONSE_FILE replays a saved response)
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import click

from .config import settings
from .events import ErrorEvent, format_sse
from .exceptions import InvalidRequestError, TransportConfigurationError
from .llm_transport import ScriptedTransport
from .logging_config import configure_logging
from .phases import Phase, estimate_phase_complexity, split_phase_if_needed
from .requests import BuildRequest, PhaseContextPayload
from .response_parser import extract_files
from .retry_strategy import RetryConfig
from .token_budget import DEFAULT_BUDGET_TABLE, BudgetTable, select_token_budget
from .truncation import TruncationDetector

logger = logging.getLogger(__name__)


def _load_phase(phase_file) -> Phase:
    try:
        return Phase.from_dict(json.load(phase_file))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise click.BadParameter(f"not a valid phase: {e}", param_hint="PHASE_JSON")


def _budget_table() -> BudgetTable:
    if settings.budgets_config_path:
        return BudgetTable.from_yaml(settings.budgets_config_path)
    return DEFAULT_BUDGET_TABLE


@click.group()
@click.version_option(package_name="appgen", prog_name="appgen")
@click.option("--log-level", default=None, help="Log level (default: APPGEN_LOG_LEVEL or INFO)")
def cli(log_level: Optional[str]) -> None:
    """appgen - multi-phase LLM application generation.

    Run `appgen <command> --help` for command-specific help.
    """
    configure_logging(log_level=log_level or settings.log_level)


@cli.command(name="estimate")
@click.argument("phase_file", metavar="PHASE_JSON", type=click.File("r"))
def estimate(phase_file) -> None:
    """Estimate a phase's complexity and pick its token budget."""
    phase = _load_phase(phase_file)
    complexity = estimate_phase_complexity(phase)
    budget = select_token_budget(phase.number, complexity, _budget_table())
    click.echo(
        json.dumps(
            {
                "phase": phase.number,
                "level": complexity.level.value,
                "estimatedTokens": complexity.estimated_tokens,
                "shouldSplit": complexity.should_split,
                "complexFeatureCount": complexity.complex_feature_count,
                "budget": {
                    "maxTokens": budget.max_tokens,
                    "thinkingBudget": budget.thinking_budget,
                    "timeoutMs": budget.timeout_ms,
                },
            },
            indent=2,
        )
    )


@cli.command(name="split")
@click.argument("phase_file", metavar="PHASE_JSON", type=click.File("r"))
def split(phase_file) -> None:
    """Split a phase into child phases if it is too large."""
    phase = _load_phase(phase_file)
    click.echo(json.dumps([child.to_dict() for child in split_phase_if_needed(phase)], indent=2))


@cli.command(name="detect")
@click.argument("response_file", type=click.File("r", encoding="utf-8"))
def detect(response_file) -> None:
    """Run truncation detection on a saved response."""
    text = response_file.read()
    files = extract_files(text)
    detector = TruncationDetector(settings.brace_tolerance, settings.markup_tolerance)
    info = detector.detect(text, files)
    salvaged = detector.salvage(files, info)
    click.echo(
        json.dumps(
            {
                "truncation": info.to_dict(),
                "files": [f.path for f in files],
                "kept": [f.path for f in salvaged],
            },
            indent=2,
        )
    )


@cli.command(name="generate")
@click.argument("prompt", required=False)
@click.option("--request-file", type=click.File("r"), help="Full JSON build request body")
@click.option("--phase-number", type=float, default=None, help="Phase number for budget selection")
@click.option("--max-attempts", type=int, default=None, help="Provider call ceiling")
@click.option(
    "--dry-run",
    "dry_run_file",
    type=click.File("r"),
    default=None,
    help="Replay a saved response instead of calling Anthropic",
)
def generate(
    prompt: Optional[str],
    request_file,
    phase_number: Optional[float],
    max_attempts: Optional[int],
    dry_run_file,
) -> None:
    """Generate an app and print progress events as SSE lines.

    With --dry-run, every attempt replays the saved response line by line, so
    parsing, truncation salvage and validation run without an API key.
    """
    from .anthropic_clients import AnthropicStreamTransport
    from .pipeline import GenerationPipeline

    try:
        if request_file is not None:
            request = BuildRequest.parse_body(request_file.read())
        else:
            body = {"prompt": prompt or ""}
            if phase_number is not None:
                body["isPhaseBuilding"] = True
                body["phaseContext"] = PhaseContextPayload(phase_number=phase_number).model_dump(
                    by_alias=True
                )
            request = BuildRequest.parse_body(body)
    except InvalidRequestError as e:
        click.echo(format_sse(ErrorEvent(message=str(e), code="INVALID_REQUEST")), nl=False)
        raise SystemExit(1)

    if dry_run_file is not None:
        transport = ScriptedTransport(scripts=[dry_run_file.read().splitlines(keepends=True)])
        logger.info("[CLI] Dry run: replaying %s", dry_run_file.name)
    else:
        try:
            transport = AnthropicStreamTransport(api_key=settings.anthropic_api_key)
        except TransportConfigurationError as e:
            click.echo(format_sse(ErrorEvent(message=str(e), code="NO_API_KEY")), nl=False)
            raise SystemExit(1)

    pipeline = GenerationPipeline(
        transport,
        retry_config=RetryConfig(max_attempts=max_attempts or settings.max_attempts),
        budget_table=_budget_table(),
    )

    async def _run() -> bool:
        success = False
        async for event in pipeline.run(request):
            click.echo(format_sse(event), nl=False)
            success = event.type == "complete"
        return success

    if not asyncio.run(_run()):
        raise SystemExit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
