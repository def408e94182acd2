"""
hashboost CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Load records (CSV / TSV / JSON / Parquet, chosen by file extension).
  4. Run the library call.
  5. Report the result to stdout.

Install and run::

    pip install -e .
    hashboost --help
    hashboost validate-config
    hashboost analyze data.csv --categorical color,size --numeric price --target sold
    hashboost train data.csv --categorical color --numeric price --target sold --out models/sold
    hashboost predict models/sold new_rows.csv --output predictions.json
"""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="hashboost",
    help="Feature-hashing gradient-boosted tree trainer and predictor.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from hashboost.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from hashboost.utils.logging import configure_logging
    configure_logging(config.logging, debug=config.debug)


def _split_names(value: Optional[str]) -> list[str]:
    return [name.strip() for name in (value or "").split(",") if name.strip()]


def _load_records_or_exit(path: str):
    from hashboost.exceptions import ValidationError
    from hashboost.ingestion.loader import load_records

    try:
        return load_records(Path(path))
    except (FileNotFoundError, ValidationError) as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Model dir:        {config.model_dir}")
    typer.echo(f"  Hash seed:        {config.encoding.hash_seed}")
    typer.echo(
        f"  Bucket sizing:    k^2 up to k={config.encoding.square_threshold}, "
        f"then {config.encoding.linear_multiplier}*k"
    )
    typer.echo(f"  Objective:        {config.booster.objective or '(task default)'}")
    typer.echo(f"  Test ratio:       {config.training.test_ratio}")
    typer.echo(f"  Cross-validation: {config.training.use_cross_validation}")
    typer.echo(f"  Log level:        {config.logging.level}")
    typer.echo(f"  Debug mode:       {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(by_alias=True), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("analyze")
def analyze(
    data_path: str = typer.Argument(..., help="CSV / TSV / JSON / Parquet data file."),
    categorical: str = typer.Option("", "--categorical", help="Comma-separated categorical features."),
    numeric: str = typer.Option("", "--numeric", help="Comma-separated numeric features."),
    target: Optional[str] = typer.Option(None, "--target", help="Target feature (classification)."),
    suggest: bool = typer.Option(
        False, "--suggest", help="Also print suggested feature types for every column."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Report cardinality, bucket sizing and numeric statistics per feature."""
    from hashboost.encoding.analyzer import FeatureAnalyzer
    from hashboost.encoding.hash_encoder import HashEncoder
    from hashboost.exceptions import ValidationError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    records = _load_records_or_exit(data_path)

    analyzer = FeatureAnalyzer(config.encoding)
    try:
        result = analyzer.analyze_features(
            records, _split_names(categorical), _split_names(numeric), target
        )
    except ValidationError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    stats = result.dataset_stats
    typer.echo(f"Rows: {stats.total_rows}  Features: {stats.total_features}  Nulls: {stats.null_values}")
    for name, spec in result.categorical_specs.items():
        collision = HashEncoder.estimate_collision_probability(spec.k, spec.bucket_count)
        typer.echo(
            f"  [cat] {name:<24} k={spec.k:<8} buckets={spec.bucket_count:<10} "
            f"p(collision)={collision:.3f}"
        )
    for name, ns in result.numeric_stats.items():
        typer.echo(
            f"  [num] {name:<24} min={ns.min:g} max={ns.max:g} mean={ns.mean:g} "
            f"std={ns.std:g} nulls={ns.null_count}"
        )
    if stats.target_classes:
        typer.echo(f"  Target classes: {', '.join(stats.target_classes)}")

    if suggest:
        suggestion = analyzer.suggest_feature_types(records)
        typer.echo("")
        typer.echo(f"Suggested categorical: {', '.join(suggestion.categorical) or '-'}")
        typer.echo(f"Suggested numeric:     {', '.join(suggestion.numeric) or '-'}")


@app.command("train")
def train(
    data_path: str = typer.Argument(..., help="CSV / TSV / JSON / Parquet training file."),
    categorical: str = typer.Option("", "--categorical", help="Comma-separated categorical features."),
    numeric: str = typer.Option("", "--numeric", help="Comma-separated numeric features."),
    target: str = typer.Option(..., "--target", help="Target feature."),
    task: str = typer.Option("classification", "--task", help="classification | regression"),
    objective: Optional[str] = typer.Option(
        None, "--objective", help="Override the booster objective (e.g. multi:softprob)."
    ),
    out: Optional[str] = typer.Option(
        None, "--out", help="Output model directory (default: <model_dir>/<target>)."
    ),
    cv: bool = typer.Option(False, "--cv", help="Run k-fold cross-validation."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Train a model and save it as a model directory."""
    from hashboost.exceptions import HashBoostError
    from hashboost.ml.trainer import Trainer

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    records = _load_records_or_exit(data_path)

    booster = config.booster
    if objective:
        booster = booster.model_copy(update={"objective": objective})
    training = config.training
    if cv:
        training = training.model_copy(update={"use_cross_validation": True})

    out_dir = Path(out) if out else Path(config.model_dir) / target
    try:
        trainer = Trainer(
            _split_names(categorical),
            _split_names(numeric),
            target,
            task_type=task,
            booster=booster,
            encoding=config.encoding,
        )
        trainer.load_raw(records)
        metrics = trainer.train(training)
        trainer.save(out_dir)
    except HashBoostError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Trained {task} model on {len(records)} records.")
    if trainer.is_one_vs_rest:
        typer.echo(f"  One-vs-rest: {len(trainer.models)} binary models")
    for key, value in metrics.model_dump(exclude_none=True, exclude={"task_type"}).items():
        typer.echo(f"  {key}: {value}")
    typer.echo(f"[OK] Model saved to {out_dir}")


@app.command("predict")
def predict(
    model_dir: str = typer.Argument(..., help="Model directory written by 'train'."),
    data_path: str = typer.Argument(..., help="Records to score."),
    output: Optional[str] = typer.Option(
        None, "--output", help="Write predictions JSON here instead of stdout."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Score records with a saved model; prints or writes a JSON array."""
    from hashboost.exceptions import HashBoostError
    from hashboost.ml.model import Model

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    records = _load_records_or_exit(data_path)

    try:
        model = Model.load(model_dir)
        batch = model.predict_batch_with_probabilities(records)
    except HashBoostError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    rows = [
        {k: v for k, v in asdict(p).items() if v is not None}
        for p in batch.predictions
    ]
    payload = json.dumps(rows, indent=2)
    if output:
        Path(output).write_text(payload, encoding="utf-8")
        typer.echo(f"[OK] {len(rows)} predictions written to {output}")
    else:
        typer.echo(payload)


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
