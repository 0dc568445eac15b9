from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .capacity import calculate_team_capacity, calculate_team_capacity_utilization
from .csv_import import IMPORTERS, CsvImportError, CsvParseOptions, merge_import, run_import
from .finance import calculate_project_cost, calculate_project_cost_for_year
from .io_utils import ensure_directory, load_config, load_dataset, save_dataset, write_csv
from .models import Dataset, PlanningConfig
from .scenario_diff import compare_scenario
from .skills import recommend_teams_for_project


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--data", required=True, help="Path to the planning dataset JSON")
    common.add_argument("--config", help="Path to configuration JSON file (defaults apply when omitted)")
    common.add_argument("--outdir", default="out", help="Output directory for generated CSV reports")
    common.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the summary without writing any output files",
    )

    parser = argparse.ArgumentParser(description="Resource planning calculations (JSON/CSV in, CSV out).")
    commands = parser.add_subparsers(dest="command", required=True)

    capacity = commands.add_parser("capacity", parents=[common], help="Team capacity for an iteration")
    capacity.add_argument("--team", required=True, help="Team id")
    capacity.add_argument("--iteration", type=int, required=True, help="1-based iteration number")
    capacity.add_argument("--quarter", help="Quarter cycle id for a per-iteration utilization report")

    cost = commands.add_parser("cost", parents=[common], help="Project cost and burn rate")
    cost.add_argument("--project", required=True, help="Project id")
    cost.add_argument("--fy", help="Financial year id for a quarterly cost split")

    recommend = commands.add_parser("recommend", parents=[common], help="Rank teams for a project by skills")
    recommend.add_argument("--project", required=True, help="Project id")
    recommend.add_argument("--top", type=int, default=3, help="Number of teams to return (default: 3)")

    diff = commands.add_parser("diff", parents=[common], help="Compare a scenario dataset against live data")
    diff.add_argument("--scenario-data", required=True, help="Path to the scenario dataset JSON")

    importer = commands.add_parser("import", parents=[common], help="Import records from a CSV file")
    importer.add_argument("--kind", required=True, choices=sorted(IMPORTERS), help="Kind of records in the CSV")
    importer.add_argument("--csv", required=True, help="Path to the CSV file")
    importer.add_argument(
        "--allow-partial",
        action="store_true",
        help="Keep valid rows when other rows fail (default: abort on the first failing row)",
    )
    importer.add_argument("--out", help="Write the merged dataset JSON here")
    return parser.parse_args(argv)


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _existing_file(path_value: str, label: str) -> Path:
    path = Path(path_value)
    if not path.exists():
        raise ValueError(f"{label} file not found at {path}")
    return path


def _write_reports(outdir: str, frames: dict) -> None:
    outdir_path = ensure_directory(outdir)
    for name, frame in frames.items():
        path = outdir_path / name
        write_csv(frame, path)
        print(f"Wrote {path}")


def _run_capacity(args: argparse.Namespace, data: Dataset, cfg: PlanningConfig) -> None:
    team = data.find_team(args.team)
    if team is None:
        raise ValueError(f"team '{args.team}' not found")
    check = calculate_team_capacity(
        team, args.iteration, data.allocations, data.iterations(), data.quarters()
    )
    status = "over-allocated" if check.is_over_allocated else "under-allocated" if check.is_under_allocated else "ok"
    print(
        f"{team.name} iteration {check.iteration_number}: {check.allocated_percentage:g}% allocated, "
        f"{check.capacity_hours:g} hours capacity ({status})"
    )
    if not args.quarter:
        return
    quarter = data.find_cycle(args.quarter)
    if quarter is None:
        raise ValueError(f"quarter '{args.quarter}' not found")
    utilization = calculate_team_capacity_utilization(
        team, quarter, data.allocations, data.cycles, data.epics, under_threshold=cfg.under_allocation_threshold
    )
    print(
        f"{quarter.name}: average {utilization.average_utilization:.1f}%, peak {utilization.peak_utilization:g}%, "
        f"trend {utilization.utilization_trend}"
    )
    for line in utilization.recommendations + utilization.warnings:
        print(f"- {line}")
    if args.dry_run:
        return
    frame = pd.DataFrame(
        [
            {
                "iteration_number": item.iteration_number,
                "cycle_id": item.cycle_id,
                "capacity_hours": item.capacity_hours,
                "allocated_percentage": item.allocated_percentage,
                "is_over_allocated": item.is_over_allocated,
                "is_under_allocated": item.is_under_allocated,
            }
            for item in utilization.iteration_breakdown
        ]
    )
    _write_reports(args.outdir, {f"capacity_{team.id}_{quarter.id}.csv": frame})


def _run_cost(args: argparse.Namespace, data: Dataset, cfg: PlanningConfig) -> None:
    project = data.find_project(args.project)
    if project is None:
        raise ValueError(f"project '{args.project}' not found")
    cost = calculate_project_cost(
        project, data.epics, data.allocations, data.cycles, data.people, data.roles, data.teams, cfg
    )
    symbol = cfg.currency_symbol
    print(f"{project.name}: total {symbol}{cost.total_cost:,.2f}, burn {symbol}{cost.monthly_burn_rate:,.2f}/month")
    if cost.budget_variance is not None:
        print(f"Budget variance: {symbol}{cost.budget_variance:,.2f}")
    for team_cost in cost.team_breakdown:
        print(f"- {team_cost.team_name}: {symbol}{team_cost.total_cost:,.2f}")

    frames = {
        f"cost_{project.id}_people.csv": pd.DataFrame(
            [
                {
                    "person_id": entry.person_id,
                    "person_name": entry.person_name,
                    "rate_source": entry.rate_source,
                    "effective_rate": entry.effective_rate,
                    "rate_type": entry.rate_type,
                    "total_cost": entry.total_cost,
                }
                for entry in cost.breakdown
            ],
            columns=["person_id", "person_name", "rate_source", "effective_rate", "rate_type", "total_cost"],
        ),
        f"cost_{project.id}_teams.csv": pd.DataFrame(
            [{"team_id": t.team_id, "team_name": t.team_name, "total_cost": t.total_cost} for t in cost.team_breakdown],
            columns=["team_id", "team_name", "total_cost"],
        ),
    }
    if args.fy:
        financial_year = data.find_financial_year(args.fy)
        if financial_year is None:
            raise ValueError(f"financial year '{args.fy}' not found")
        yearly = calculate_project_cost_for_year(
            project, data.epics, data.allocations, data.cycles, data.people, data.roles, financial_year, cfg
        )
        print(f"{financial_year.name}: {symbol}{yearly['total_annual_cost']:,.2f}")
        for quarter_name, amount in yearly["quarterly_costs"].items():
            print(f"- {quarter_name}: {symbol}{amount:,.2f}")
        frames[f"cost_{project.id}_{financial_year.id}.csv"] = pd.DataFrame(
            list(yearly["quarterly_costs"].items()), columns=["quarter", "cost"]
        )
    if not args.dry_run:
        _write_reports(args.outdir, frames)


def _run_recommend(args: argparse.Namespace, data: Dataset, cfg: PlanningConfig) -> None:
    project = data.find_project(args.project)
    if project is None:
        raise ValueError(f"project '{args.project}' not found")
    if args.top < 1:
        raise ValueError("--top must be at least 1")
    ranked = recommend_teams_for_project(
        project,
        data.teams,
        data.project_skills,
        data.solutions,
        data.skills,
        args.top,
        data.project_solutions,
        data.people,
        data.person_skills,
    )
    if not ranked:
        print("No teams to recommend.")
    for item in ranked:
        print(
            f"{item.rank}. {item.team.name} ({item.compatibility.compatibility_score:.0%}, "
            f"{item.compatibility.recommendation}): {item.recommendation}"
        )
    if args.dry_run:
        return
    frame = pd.DataFrame(
        [
            {
                "rank": item.rank,
                "team_id": item.team.id,
                "team_name": item.team.name,
                "compatibility_score": item.compatibility.compatibility_score,
                "skills_matched": item.compatibility.skills_matched,
                "skills_required": item.compatibility.skills_required,
                "recommendation": item.recommendation,
            }
            for item in ranked
        ]
    )
    _write_reports(args.outdir, {f"recommendations_{project.id}.csv": frame})


def _run_diff(args: argparse.Namespace, data: Dataset, cfg: PlanningConfig) -> None:
    scenario = load_dataset(_existing_file(args.scenario_data, "scenario data"))
    comparison = compare_scenario(data, scenario, cfg.currency_symbol)
    if not comparison.changes:
        print("No changes.")
    for change in comparison.changes:
        print(f"[{change.impact}] {change.description}")
    print(f"{comparison.summary['total_changes']} changes")
    if not args.dry_run:
        frame = pd.DataFrame(
            [c.to_dict() for c in comparison.changes],
            columns=["type", "category", "entity", "description", "impact"],
        )
        _write_reports(args.outdir, {"scenario_changes.csv": frame})


def _run_import(args: argparse.Namespace, data: Dataset, cfg: PlanningConfig) -> None:
    content = _existing_file(args.csv, "CSV").read_text(encoding="utf-8")
    options = CsvParseOptions(
        allow_partial_imports=args.allow_partial,
        chunk_size=cfg.csv_chunk_size,
        max_file_bytes=cfg.csv_max_file_bytes,
        progress_interval=cfg.progress_interval,
    )
    result = run_import(args.kind, content, data, options)
    summary = result.summary
    print(
        f"Imported {len(result.data)} of {summary['total_rows']} rows "
        f"({len(result.errors)} errors, {len(result.warnings)} warnings)"
    )
    for error in result.errors:
        print(f"- row {error.row} [{error.column}]: {error.message}")
    for warning in result.warnings:
        print(f"- row {warning.row} [{warning.column}] warning: {warning.message}")
    if args.dry_run:
        return
    if result.errors:
        frame = pd.DataFrame([e.to_dict() for e in result.errors])
        _write_reports(args.outdir, {f"import_{args.kind}_errors.csv": frame})
    if args.out:
        save_dataset(merge_import(data, args.kind, result), args.out)
        print(f"Wrote {args.out}")


COMMANDS = {
    "capacity": _run_capacity,
    "cost": _run_cost,
    "recommend": _run_recommend,
    "diff": _run_diff,
    "import": _run_import,
}


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        cfg = load_config(_existing_file(args.config, "config") if args.config else None)
        data = load_dataset(_existing_file(args.data, "data"))
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)
    _configure_logging(cfg.logging_level)

    try:
        COMMANDS[args.command](args, data, cfg)
    except CsvImportError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
