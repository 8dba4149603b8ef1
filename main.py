"""main.py

Command-line entrypoint for the MCP workflow evaluation harness.

Wires together all subsystems:
  config_loader -> runner (connection -> agent -> evaluator, tool_health) -> reporting
"""

from __future__ import annotations

import argparse
import asyncio
import csv
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from openai import AsyncOpenAI

from config import CONFIG_REQUIRED_VARS, configure_logging, logger
from config_loader import load_config
from errors import ConfigError, McpConnectionError
from llm import OpenAIChatModel
from models import EvaluationReport
from reporting import evaluation_payload, flatten_evaluations_for_csv, log_summary, render_markdown_report
from runner import run_evaluation
from utils import _safe_json_dumps, validate_environment

load_dotenv(find_dotenv())


def write_outputs(report: EvaluationReport, output_json: Path, config_path: Path) -> None:
    output_json.parent.mkdir(parents=True, exist_ok=True)
    output_json.write_text(_safe_json_dumps(evaluation_payload(report, config_path)), encoding="utf-8")
    logger.info("Wrote audit JSON to %s", output_json)

    csv_rows = flatten_evaluations_for_csv(report)
    csv_path = output_json.with_name(output_json.stem + "_flattened.csv")
    if csv_rows:
        with csv_path.open("w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=list(csv_rows[0].keys()))
            w.writeheader()
            w.writerows(csv_rows)
        logger.info("Wrote flattened CSV to %s", csv_path)

    md_path = output_json.with_name(output_json.stem + "_report.md")
    md_path.write_text(render_markdown_report(report, config_path), encoding="utf-8")
    logger.info("Wrote markdown report to %s", md_path)


async def evaluate(
    config_path: Path,
    output_json: Optional[Path],
    *,
    parallel: Optional[bool] = None,
    run_workflows: bool = True,
    run_tool_health: bool = True,
) -> bool:
    config = load_config(config_path)
    if run_workflows and config.workflows:
        validate_environment(CONFIG_REQUIRED_VARS)

    llm_client: Optional[AsyncOpenAI] = None

    def _model_factory() -> OpenAIChatModel:
        # created on first use; tool-health-only runs need no API key
        nonlocal llm_client
        if llm_client is None:
            llm_client = AsyncOpenAI(base_url=os.getenv("LLM_BASE_URL"))
        return OpenAIChatModel(llm_client, os.getenv("LLM_MODEL", ""))

    report = await run_evaluation(
        config,
        _model_factory,
        parallel=parallel,
        run_workflows=run_workflows,
        run_tool_health=run_tool_health,
    )
    log_summary(report)
    if output_json is not None:
        write_outputs(report, output_json, config_path)
    return report.passed


def main(argv: Optional[list[str]] = None) -> None:
    p = argparse.ArgumentParser(description="Evaluate an MCP server against declared agent workflows")
    p.add_argument("--config", type=str, default="mcp-eval.config.json", help="Path to evaluation config (JSON)")
    p.add_argument("--out", type=str, default=None, help="Output audit JSON (CSV and Markdown are written beside it)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--log-file", type=str, default=None, help="Also write logs to this file")
    p.add_argument("--parallel", action="store_true", default=None, help="Run workflows in parallel, one session each")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--workflows-only", action="store_true", help="Skip tool health suites")
    group.add_argument("--tool-health-only", action="store_true", help="Skip workflows")
    args = p.parse_args(argv)

    configure_logging(debug=args.debug, log_file=args.log_file)

    try:
        passed = asyncio.run(
            evaluate(
                Path(args.config),
                Path(args.out) if args.out else None,
                parallel=args.parallel,
                run_workflows=not args.tool_health_only,
                run_tool_health=not args.workflows_only,
            )
        )
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(2)
    except (McpConnectionError, ValueError) as e:
        logger.error("Evaluation aborted: %s", e)
        sys.exit(1)
    sys.exit(0 if passed else 1)


if __name__ == "__main__":
    main()
