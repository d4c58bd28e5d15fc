"""Command-line front end for the tekton-agent orchestrator."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from tekton_agent.core.config_manager import AgentConfig, ConfigManager
from tekton_agent.core.exceptions import AgentError
from tekton_agent.core.logging_utils import log_json
from tekton_agent.core.orchestrator import Orchestrator
from tekton_agent.core.types import Task, TaskKind

EXIT_OK = 0
EXIT_WORKFLOW_ERROR = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tekton-agent",
        description="Propose and apply Tekton Task updates for Jumpstarter changes.",
    )
    parser.add_argument("--state-dir", dest="state_dir", help="Directory for agent state (default: .agent-state).")
    parser.add_argument("--config", dest="config_file", default="tekton-agent.config.json",
                        help="Path to the JSON config file.")
    sub = parser.add_subparsers(dest="command", required=True)

    propose = sub.add_parser("propose", help="Propose updates to a Tekton Task.")
    propose.add_argument("--task", required=True, help="Path to Tekton Task YAML file.")
    propose.add_argument("--changes", required=True, help="Path to Jumpstarter changes JSON file.")
    propose.add_argument("--out", help="Output path for updated YAML.")

    analyze = sub.add_parser("analyze", help="Analyze impact of changes.")
    analyze.add_argument("--task", required=True, help="Path to Tekton Task YAML file.")
    analyze.add_argument("--changes", required=True, help="Path to Jumpstarter changes JSON file.")

    batch = sub.add_parser("batch", help="Process every Task YAML in a directory.")
    batch.add_argument("--tasks-dir", dest="tasks_dir", required=True, help="Directory of Task YAML files.")
    batch.add_argument("--changes", required=True, help="Path to Jumpstarter changes JSON file.")
    batch.add_argument("--out-dir", dest="out_dir", required=True, help="Output directory for updated YAML.")

    auto = sub.add_parser("auto-update", help="Apply low-impact changes automatically.")
    auto.add_argument("--task", required=True, help="Path to Tekton Task YAML file.")
    auto.add_argument("--changes", required=True, help="Path to Jumpstarter changes JSON file.")
    auto.add_argument("--out", required=True, help="Output path for updated YAML.")
    auto.add_argument("--threshold", type=float, help="Auto-apply threshold in [0, 1] (default from config).")

    state = sub.add_parser("state", help="Show agent memory and statistics.")
    state.add_argument("--verbose", action="store_true", help="Include recent decisions.")
    state.add_argument("--json", action="store_true", help="Output machine-readable JSON.")

    run = sub.add_parser("run", help="Queue tasks from a JSON file and process them.")
    run.add_argument("--tasks-file", dest="tasks_file", required=True,
                     help="JSON list of {kind, task, changes, tasks_dir, source, priority} entries.")
    return parser


def _build_orchestrator(args: argparse.Namespace) -> Orchestrator:
    overrides = {"state_dir": args.state_dir} if args.state_dir else None
    manager = ConfigManager(config_file=args.config_file, overrides=overrides)
    orchestrator = Orchestrator(AgentConfig.from_manager(manager))
    orchestrator.initialize()
    return orchestrator


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _tasks_from_file(orchestrator: Orchestrator, tasks_file: str) -> List[Task]:
    entries = json.loads(Path(tasks_file).read_text(encoding="utf-8"))
    if not isinstance(entries, list):
        raise ValueError(f"Tasks file {tasks_file} must hold a JSON list of task entries")
    tasks = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValueError(f"Task entry #{index} in {tasks_file} must be an object, got {type(entry).__name__}")
        kind = TaskKind(entry["kind"])
        priority = int(entry.get("priority", 0))
        task_id = entry.get("id")
        if kind == TaskKind.MONITOR_CHANGES:
            tasks.append(Task.monitor(entry.get("source"), task_id=task_id, priority=priority))
            continue
        changes = orchestrator.change_loader.load(entry["changes"])
        if kind == TaskKind.BATCH_UPDATE:
            tasks_dir = Path(entry["tasks_dir"])
            documents = {p.name: p.read_text(encoding="utf-8")
                         for p in sorted(tasks_dir.iterdir()) if p.suffix in (".yaml", ".yml")}
            tasks.append(Task.batch(documents, changes, task_id=task_id, priority=priority))
            continue
        document = Path(entry["task"]).read_text(encoding="utf-8")
        factory = Task.update if kind == TaskKind.UPDATE_TASK else Task.analyze
        tasks.append(factory(document, changes, task_id=task_id, priority=priority))
    return tasks


def render_state(orchestrator: Orchestrator, verbose: bool = False, console: Optional[Console] = None) -> None:
    console = console or Console()
    state = orchestrator.get_state()
    stats = state.stats

    table = Table(title="Agent State", box=box.SIMPLE)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Memories", str(len(state.memories)))
    table.add_row("Tasks", str(stats.total_tasks))
    table.add_row("Successful records", str(stats.successful_tasks))
    table.add_row("Failed records", str(stats.failed_tasks))
    table.add_row("Last run", stats.last_run_timestamp or "-")
    console.print(table)

    if verbose:
        recent = Table(title="Recent Decisions", box=box.SIMPLE, expand=True)
        recent.add_column("Time")
        recent.add_column("Action")
        recent.add_column("OK")
        recent.add_column("Reasoning", overflow="fold")
        for entry in orchestrator.recent_decisions(10):
            recent.add_row(entry["timestamp"], entry["action"],
                           "[green]yes[/green]" if entry["success"] else "[red]no[/red]",
                           entry["error"] or entry["reasoning"])
        console.print(recent)


def _dispatch(args: argparse.Namespace, orchestrator: Orchestrator) -> Dict[str, Any]:
    if args.command == "propose":
        updated = orchestrator.propose_update_file(args.task, args.changes, args.out)
        return {"status": "ok", "output": args.out, "document": None if args.out else updated}
    if args.command == "analyze":
        return {"status": "ok", **orchestrator.analyze_impact_file(args.task, args.changes)}
    if args.command == "batch":
        outcome = orchestrator.batch_update_dir(args.tasks_dir, args.changes, args.out_dir)
        for entry in outcome["results"]:
            entry.pop("document", None)
        return {"status": "ok", **outcome}
    if args.command == "auto-update":
        outcome = orchestrator.auto_update_file(args.task, args.changes, args.out, args.threshold)
        outcome.pop("document", None)
        return {"status": "ok", **outcome}
    if args.command == "run":
        for task in _tasks_from_file(orchestrator, args.tasks_file):
            orchestrator.add_task(task)
        processed = orchestrator.drain()
        return {"status": "ok", "processed": processed, "summary": orchestrator.state.get_summary(),
                "queue": orchestrator.get_queue_status()}
    raise ValueError(f"Unknown command {args.command!r}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return EXIT_OK if exc.code == 0 else EXIT_USAGE

    try:
        orchestrator = _build_orchestrator(args)
    except AgentError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_WORKFLOW_ERROR

    try:
        if args.command == "state":
            if args.json:
                state = orchestrator.get_state()
                payload = {"summary": orchestrator.state.get_summary(), "stats": state.stats.to_dict()}
                if args.verbose:
                    payload["recent"] = orchestrator.recent_decisions(10)
                _print_json(payload)
            else:
                render_state(orchestrator, verbose=args.verbose)
            return EXIT_OK

        _print_json(_dispatch(args, orchestrator))
        return EXIT_OK
    except (AgentError, OSError, ValueError, KeyError) as exc:
        log_json("ERROR", "cli_command_failed", details={"command": args.command, "error": str(exc)})
        _print_json({"status": "error", "command": args.command, "message": str(exc)})
        return EXIT_WORKFLOW_ERROR
    finally:
        orchestrator.close()


if __name__ == "__main__":
    raise SystemExit(main())
