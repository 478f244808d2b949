from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from .config_models.comparison_models import ComparisonMemory
from .engine.rule_task import RuleEvaluator
from .engine.snapshot import compile_rule
from .errors import CompMemError, ConfigurationError, EngineSettingsError, StoreError
from .points.point_store import StaticPointStore
from .store.yaml_store import YamlDefinitionStore, load_definition_file
from .validation.comparison import validate


app = typer.Typer(help="compmem - comparison memory engine")

DEFAULT_DEFINITIONS_DIR = Path("definitions")


@app.callback()
def common(
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
):
    """Configures logging for every command."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def _load_or_exit(path: Path) -> ComparisonMemory:
    try:
        return load_definition_file(path)
    except StoreError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)


@app.command("validate")
def validate_command(
    files: List[Path] = typer.Argument(..., help="Definition YAML files to check"),
):
    """Reports every field error in each definition file."""
    failed = 0
    for path in files:
        memory = _load_or_exit(path)
        errors = validate(memory)
        if not errors:
            typer.secho(f"OK  {path} ({memory.display_name()})", fg=typer.colors.GREEN)
            continue
        failed += 1
        typer.secho(f"ERR {path} ({memory.display_name()})", fg=typer.colors.RED)
        for err in errors:
            print(f"    {err.field}: [{err.code}] {err.message}")
    if failed:
        raise typer.Exit(code=2)


@app.command("list")
def list_command(
    definitions: Path = typer.Option(DEFAULT_DEFINITIONS_DIR, "--definitions", help="Definitions directory"),
):
    """Lists the valid definitions in a store."""
    store = YamlDefinitionStore(definitions)
    for memory in store.load_all():
        state = "disabled" if memory.is_disabled else "enabled"
        print(f"{memory.id} | {memory.name or '-'} | groups={len(memory.comparison_groups)} "
              f"| operator={memory.group_operator.value} | output={memory.output_item_id} | {state}")


@app.command("add")
def add_command(
    file: Path = typer.Argument(..., help="Definition YAML file to add or replace"),
    definitions: Path = typer.Option(DEFAULT_DEFINITIONS_DIR, "--definitions", help="Definitions directory"),
):
    """Validates a definition and saves it into the store."""
    memory = _load_or_exit(file)
    store = YamlDefinitionStore(definitions)
    try:
        store.save(memory)
    except ConfigurationError as e:
        typer.secho(f"Definition rejected: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    except StoreError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho(f"Saved {memory.id}", fg=typer.colors.GREEN)


@app.command("delete")
def delete_command(
    memory_id: str = typer.Argument(..., help="Id of the definition to delete"),
    definitions: Path = typer.Option(DEFAULT_DEFINITIONS_DIR, "--definitions", help="Definitions directory"),
):
    """Removes a definition from the store."""
    store = YamlDefinitionStore(definitions)
    try:
        deleted = store.delete(memory_id)
    except StoreError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not deleted:
        typer.secho(f"No definition with id {memory_id}", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)
    typer.secho(f"Deleted {memory_id}", fg=typer.colors.GREEN)


def _load_steps(path: Path) -> List[Dict[str, Any]]:
    """A values file is one mapping of point id -> value, or a list of such mappings (one per tick)."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list) and all(isinstance(step, dict) for step in data):
        return data
    raise ValueError(f"{path} must hold a mapping or a list of mappings")


@app.command("evaluate")
def evaluate_command(
    file: Path = typer.Argument(..., help="Definition YAML file"),
    values: Path = typer.Option(..., "--values", help="YAML point values (mapping, or list of mappings per tick)"),
    ticks: Optional[int] = typer.Option(None, "--ticks", help="Ticks to run (defaults to one per values step)"),
    step_seconds: Optional[float] = typer.Option(None, "--step-seconds", help="Simulated time between ticks (defaults to the rule interval)"),
):
    """Dry-runs a definition against fixed point values on a simulated clock."""
    memory = _load_or_exit(file)
    try:
        snapshot = compile_rule(memory)
    except ConfigurationError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=2)
    try:
        steps = _load_steps(values)
    except (OSError, yaml.YAMLError, ValueError) as e:
        typer.secho(f"Could not read values: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    step = step_seconds if step_seconds is not None else float(snapshot.interval)
    total = ticks if ticks is not None else len(steps)
    now = [0.0]
    store = StaticPointStore()
    evaluator = RuleEvaluator(snapshot, store, clock=lambda: now[0])
    labels = {group.id: group.label for group in snapshot.groups}

    for i in range(total):
        if i < len(steps):
            store.set_values(steps[i])
        result = evaluator.tick()
        if not result.evaluated:
            print(f"t={now[0]:>7.1f}s  disabled")
            now[0] += step
            continue
        groups = ", ".join(
            f"{labels[gid]}={'T' if on else 'F'}({result.true_counts[gid]})"
            for gid, on in result.group_results.items()
        )
        line = f"t={now[0]:>7.1f}s  {groups}  candidate={int(bool(result.candidate))}"
        if result.written is not None:
            line += f"  -> wrote {int(result.written)} to {snapshot.output_id}"
        if result.unavailable_inputs:
            line += f"  unavailable=[{', '.join(result.unavailable_inputs)}]"
        print(line)
        now[0] += step


@app.command("run")
def run_command(
    config: Path = typer.Option(..., "--config", help="Engine settings YAML"),
):
    """Runs the engine against the MQTT broker until interrupted."""
    from .engine.runner import ComparisonEngineRunner, EngineRunnerError

    runner = ComparisonEngineRunner(str(config))
    try:
        runner.setup()
    except EngineSettingsError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except (CompMemError, EngineRunnerError) as e:
        typer.secho(f"Setup failed: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if runner.settings is not None:
        logging.getLogger().setLevel(runner.settings.logging.level)
    runner.run()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
