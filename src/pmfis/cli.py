"""
pmfis.cli

Command Line Interface for PMFIS.

Commands:
  - show-fis:   Print inputs, MFs and rules of a saved system (fis.json)
  - preprocess: Clean + normalize a train/test CSV pair
  - evaluate:   Predict with a system and report per-sensor metrics
  - importance: Rule importance (binary / weighted activation) on a dataset
  - sweep:      Prune rules one at a time and record the accuracy trajectory
  - prune:      Keep a given number of rules (optionally retrain) and evaluate

Core constraints:
  - Datasets are expected to be normalized already (use `preprocess`).
  - The feature order must match the input order of the system.

Usage examples:

  pmfis preprocess --train_csv train.csv --test_csv test.csv --out data/
  pmfis importance --fis fis.json --csv data/train.csv --method weighted --out runs/importance.csv
  pmfis sweep --fis fis.json --train_csv data/train.csv --test_csv data/test.csv --config sweep.yaml --out runs/sweep
  pmfis prune --fis fis.json --train_csv data/train.csv --test_csv data/test.csv --rules 12 --retrain --out runs/r12
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .activation import ActivationAnalyzer, activation_report
from .config import ReductionConfig
from .data import (
    CalibrationDataset,
    append_predictions,
    load_csv,
    prepare_calibration_data,
)
from .engine import FuzzyInferenceEngine
from .errors import ConfigurationError, PmfisError
from .fis import FuzzyInferenceSystem
from .metrics import Evaluator, MetricsTable
from .sweep import PruningOrchestrator, ReductionTrajectory
from .utils import ensure_dir, parse_csv_list, write_json

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _fail(exc: Exception) -> None:
    console.print(f"[red]Error:[/red] {exc}")
    raise typer.Exit(code=2)


def _features(fis: FuzzyInferenceSystem, features: Optional[str], cfg: Optional[ReductionConfig] = None) -> List[str]:
    """
    Dataset columns feeding the system, in input order: --features, else the
    config list, else the system's own input names.
    """
    names = parse_csv_list(features)
    if names is None and cfg is not None:
        names = cfg.feature_names
    if names is None:
        return list(fis.input_names)
    if len(names) != fis.num_inputs:
        raise ConfigurationError(
            f"{len(names)} feature columns given ({names}) but the system has {fis.num_inputs} inputs."
        )
    return list(names)


def _metrics_table(title: str, table: MetricsTable) -> Table:
    t = Table(title=title)
    for col in ("Sensor", "R2", "MAE", "MSE", "RMSE", "N", "Undefined"):
        t.add_column(col)
    for r in table:
        t.add_row(
            r.group_id,
            f"{r.r2:.4f}",
            f"{r.mae:.4f}",
            f"{r.mse:.4f}",
            f"{r.rmse:.4f}",
            str(r.n_samples),
            str(r.n_undefined),
        )
    return t


def _importance_report(scores, n_samples: int, normalized: bool):
    # normalized scores are per-sample; the report wants totals
    counts = scores * n_samples if normalized else scores
    report = activation_report(counts, n_samples)
    report["importance"] = scores
    return report


def _make_trainer(epochs: int):
    # torch is only needed when retraining
    from .train import HybridTrainer, TrainConfig

    return HybridTrainer(TrainConfig(epochs=epochs))


@app.command("show-fis")
def cmd_show_fis(
    fis: Path = typer.Option(..., "--fis", help="Path to a fis.json file."),
):
    try:
        system = FuzzyInferenceSystem.from_json(fis)
    except PmfisError as e:
        _fail(e)

    inputs = Table(title=f"Inputs of '{system.name}'")
    inputs.add_column("Input")
    inputs.add_column("Membership functions")
    for var in system.inputs:
        inputs.add_row(var.name, ", ".join(f"{m.name or m.shape}{list(m.params)}" for m in var.membership_functions))
    console.print(inputs)

    rules = Table(title=f"{system.num_rules} rules")
    rules.add_column("Rule")
    rules.add_column("IF")
    rules.add_column("THEN")
    rules.add_column("Weight")
    for i, rule in enumerate(system.rules):
        parts = []
        for var, idx in zip(system.inputs, rule.antecedent):
            if idx == 0:
                continue
            if 1 <= idx <= var.num_mfs:
                label = var.membership_functions[idx - 1].name or f"mf{idx}"
            else:
                label = f"<invalid mf {idx}>"
            parts.append(f"{var.name} is {label}")
        fn = system.output.functions[rule.consequent]
        rules.add_row(str(i + 1), " AND ".join(parts) or "(always)", f"{fn.kind}{list(fn.params)}", f"{rule.weight:g}")
    console.print(rules)


@app.command("preprocess")
def cmd_preprocess(
    train_csv: Path = typer.Option(..., "--train_csv", help="Raw training CSV."),
    test_csv: Path = typer.Option(..., "--test_csv", help="Raw test CSV."),
    out: Path = typer.Option(..., "--out", help="Output directory for train.csv, test.csv and scaler.json."),
    features: Optional[str] = typer.Option(None, "--features", help="Comma-separated feature columns."),
    verbose: bool = typer.Option(True, "--verbose/--quiet", help="Log preprocessing steps."),
):
    _setup_logging(verbose)
    try:
        train, test, scaler = prepare_calibration_data(
            load_csv(train_csv), load_csv(test_csv), feature_names=parse_csv_list(features)
        )
    except PmfisError as e:
        _fail(e)

    ensure_dir(out)
    train.to_csv(out / "train.csv", index=False)
    test.to_csv(out / "test.csv", index=False)
    write_json({"scaler_min": scaler.scaler_min, "scaler_max": scaler.scaler_max}, out / "scaler.json")
    console.print(f"[green]Done.[/green] Wrote {len(train)} train / {len(test)} test rows to: {out}")


@app.command("evaluate")
def cmd_evaluate(
    fis: Path = typer.Option(..., "--fis", help="Path to fis.json."),
    csv: Path = typer.Option(..., "--csv", help="Normalized dataset CSV."),
    out: Optional[Path] = typer.Option(None, "--out", help="Optional CSV with the prediction column added."),
    features: Optional[str] = typer.Option(None, "--features", help="Comma-separated feature columns (default: input names)."),
    n_jobs: int = typer.Option(1, "--n_jobs", help="Parallel workers for inference."),
):
    _setup_logging(False)
    try:
        system = FuzzyInferenceSystem.from_json(fis)
        df = load_csv(csv)
        ds = CalibrationDataset.from_frame(df, _features(system, features))
        predictions = FuzzyInferenceEngine(n_jobs=n_jobs).predict(system, ds.X)
        table = Evaluator().score_dataset(ds, predictions)
    except PmfisError as e:
        _fail(e)

    console.print(_metrics_table("Evaluation", table))
    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        append_predictions(df, predictions).to_csv(out, index=False)
        console.print(f"[green]Done.[/green] Wrote predictions to: {out}")


@app.command("importance")
def cmd_importance(
    fis: Path = typer.Option(..., "--fis", help="Path to fis.json."),
    csv: Path = typer.Option(..., "--csv", help="Dataset used to measure activation (usually training data)."),
    method: str = typer.Option("binary", "--method", help="binary (BAM) or weighted (WAM)."),
    normalize: bool = typer.Option(False, "--normalize", help="Divide scores by the number of samples."),
    out: Optional[Path] = typer.Option(None, "--out", help="Optional CSV for the activation report."),
    features: Optional[str] = typer.Option(None, "--features", help="Comma-separated feature columns."),
    n_jobs: int = typer.Option(1, "--n_jobs", help="Parallel workers."),
):
    _setup_logging(False)
    try:
        system = FuzzyInferenceSystem.from_json(fis)
        ds = CalibrationDataset.from_frame(load_csv(csv), _features(system, features))
        analyzer = ActivationAnalyzer(method=method, normalize=normalize, n_jobs=n_jobs)
        scores = analyzer.analyze(system, ds.X)
    except PmfisError as e:
        _fail(e)

    report = _importance_report(scores, len(ds), normalize)
    table = Table(title=f"Rule activation ({analyzer.method}{', normalized' if normalize else ''})")
    table.add_column("Rule")
    table.add_column("Activation")
    table.add_column("Frequency %")
    table.add_column("Importance")
    for row in report.itertuples(index=False):
        table.add_row(
            str(row.rule), f"{row.activation_count:.6g}", f"{row.frequency_pct:.2f}", f"{row.importance:.6g}"
        )
    console.print(table)

    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        report.to_csv(out, index=False)
        console.print(f"[green]Done.[/green] Wrote activation report to: {out}")


@app.command("sweep")
def cmd_sweep(
    fis: Path = typer.Option(..., "--fis", help="Path to the trained fis.json."),
    train_csv: Path = typer.Option(..., "--train_csv", help="Normalized training CSV."),
    test_csv: Path = typer.Option(..., "--test_csv", help="Normalized held-out CSV."),
    out: Path = typer.Option(..., "--out", help="Output directory."),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML run configuration."),
    method: Optional[str] = typer.Option(None, "--method", help="Override activation method."),
    floor: Optional[int] = typer.Option(None, "--floor", help="Override minimum number of rules."),
    retrain: Optional[bool] = typer.Option(None, "--retrain/--no-retrain", help="Override retraining."),
    epochs: Optional[int] = typer.Option(None, "--epochs", help="Override retraining epoch budget."),
    display: bool = typer.Option(False, "--display", help="Log progress and per-iteration metrics."),
):
    """
    Rank rules by activation on the training set, then evaluate every rule count
    from all rules down to the floor.

    Writes:
      - importance.csv
      - trajectory.csv / trajectory.json
      - fis_final.json (smallest successfully evaluated system)
      - metrics_final.json (per-sensor metrics of that system)
    """
    try:
        cfg = ReductionConfig.from_yaml(config) if config is not None else ReductionConfig()
        overrides = {
            "activation_method": method,
            "floor_rule_count": floor,
            "retrain": retrain,
            "epoch_budget": epochs,
        }
        for key, value in overrides.items():
            if value is not None:
                setattr(cfg, key, value)
        cfg.display_results = cfg.display_results or display
        cfg.validate()
    except PmfisError as e:
        _fail(e)

    _setup_logging(cfg.display_results)
    trajectory = _run(fis, train_csv, test_csv, out, cfg)

    table = Table(title="Rule reduction trajectory")
    for col in ("Rules", "R2 train", "R2 test", "MAE train", "MAE test"):
        table.add_column(col)
    for i in range(len(trajectory)):
        table.add_row(
            str(trajectory.rule_counts[i]),
            f"{trajectory.r2_train[i]:.4f}",
            f"{trajectory.r2_test[i]:.4f}",
            f"{trajectory.mae_train[i]:.4f}",
            f"{trajectory.mae_test[i]:.4f}",
        )
    console.print(table)
    if trajectory.failed_iterations:
        console.print(f"[yellow]Warning:[/yellow] retraining failed at iterations {trajectory.failed_iterations}")
    console.print(f"[green]Done.[/green] Results saved to: {out}")


@app.command("prune")
def cmd_prune(
    fis: Path = typer.Option(..., "--fis", help="Path to the trained fis.json."),
    train_csv: Path = typer.Option(..., "--train_csv", help="Normalized training CSV."),
    test_csv: Path = typer.Option(..., "--test_csv", help="Normalized held-out CSV."),
    rules: int = typer.Option(..., "--rules", help="Number of rules to keep."),
    out: Path = typer.Option(..., "--out", help="Output directory."),
    method: str = typer.Option("binary", "--method", help="binary (BAM) or weighted (WAM)."),
    retrain: bool = typer.Option(False, "--retrain", help="Re-tune the reduced system."),
    epochs: int = typer.Option(100, "--epochs", help="Retraining epoch budget."),
    display: bool = typer.Option(False, "--display", help="Log progress."),
):
    """
    Keep the `--rules` most important rules and evaluate the reduced system.
    """
    try:
        cfg = ReductionConfig(
            exact_rule_count=rules,
            activation_method=method,
            retrain=retrain,
            epoch_budget=epochs,
            display_results=display,
        )
    except PmfisError as e:
        _fail(e)

    _setup_logging(display)
    trajectory = _run(fis, train_csv, test_csv, out, cfg)
    if trajectory.failed_iterations:
        console.print("[red]Retraining failed; no reduced system was written.[/red]")
        raise typer.Exit(code=1)
    console.print(
        f"{rules} rules: R2 train={trajectory.r2_train[0]:.4f}, R2 test={trajectory.r2_test[0]:.4f}, "
        f"MAE train={trajectory.mae_train[0]:.4f}, MAE test={trajectory.mae_test[0]:.4f}"
    )
    console.print(f"[green]Done.[/green] Results saved to: {out}")


def _run(fis_path: Path, train_csv: Path, test_csv: Path, out: Path, cfg: ReductionConfig) -> ReductionTrajectory:
    try:
        system = FuzzyInferenceSystem.from_json(fis_path)
        feature_names = _features(system, None, cfg)
        train = CalibrationDataset.from_frame(
            load_csv(train_csv, cfg.time_col), feature_names, cfg.target_col, cfg.group_col, cfg.time_col
        )
        test = CalibrationDataset.from_frame(
            load_csv(test_csv, cfg.time_col), feature_names, cfg.target_col, cfg.group_col, cfg.time_col
        )

        analyzer = ActivationAnalyzer(
            method=cfg.activation_method,
            normalize=cfg.normalize_importance,
            n_jobs=cfg.n_jobs,
            display_results=cfg.display_results,
        )
        importance = analyzer.analyze(system, train.X)

        trainer = _make_trainer(cfg.epoch_budget) if cfg.retrain else None
        orchestrator = PruningOrchestrator.from_config(cfg, trainer=trainer)
        if cfg.exact_rule_count is not None:
            trajectory = orchestrator.run_exact(system, importance, train, test, cfg.exact_rule_count)
        else:
            trajectory = orchestrator.run(system, importance, train, test, floor=cfg.floor_rule_count)

        final_metrics = None
        if trajectory.final_fis is not None:
            final_metrics = {
                "num_rules": trajectory.final_fis.num_rules,
                "train": orchestrator.score(trajectory.final_fis, train).to_records(),
                "test": orchestrator.score(trajectory.final_fis, test).to_records(),
            }
    except PmfisError as e:
        _fail(e)

    ensure_dir(out)
    report = _importance_report(importance, len(train), cfg.normalize_importance)
    report.to_csv(out / "importance.csv", index=False)
    trajectory.to_frame().to_csv(out / "trajectory.csv", index=False)
    write_json({"config": cfg.to_dict(), **trajectory.to_dict()}, out / "trajectory.json", sort_keys=False)
    if trajectory.final_fis is not None:
        trajectory.final_fis.to_json(out / "fis_final.json")
    if final_metrics is not None:
        write_json(final_metrics, out / "metrics_final.json", sort_keys=False)
    return trajectory


if __name__ == "__main__":
    app()
