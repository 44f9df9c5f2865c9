# healthcast/app.py
#
# Main Application Entry Point
# Command line surface over the forecasting service and the outbreak detector.
#
#   healthcast forecast --entity-type disease --key dengue --geo-unit-id 7
#   healthcast forecast --all
#   healthcast outbreaks
#   healthcast alerts --risk-level high

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

# --- Core Application Imports ---
try:
    from config.settings import settings
except ImportError as e:
    logging.basicConfig(level="CRITICAL")
    logging.critical(f"FATAL ERROR: The application's configuration `config.settings` could not be loaded. {e}", exc_info=True)
    raise

from analytics import EntityKey, ForecastService, HealthcastError, OutbreakDetector, OutbreakThresholdTable, RiskLevel
from analytics.aggregation import GRANULARITY_CHOICES
from data_processing import CsvSurveillanceSource, SQLiteStore

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    """Set up global logging based on the level defined in settings."""
    logging.basicConfig(
        level=level or settings.app.log_level,
        format=settings.app.log_format,
        datefmt=settings.app.log_date_format,
        force=True
    )


def _emit(payload) -> None:
    json.dump(payload, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


def _build_source(args, store: SQLiteStore):
    if args.source == "csv":
        return CsvSurveillanceSource(data_dir=Path(args.data_dir) if args.data_dir else None)
    return store


# --- Commands ---

def cmd_forecast(args) -> int:
    store = SQLiteStore(args.db)
    service = ForecastService(source=_build_source(args, store), prediction_store=store)

    if args.all:
        _emit(service.run_forecasts(horizon=args.horizon, granularity=args.granularity, n_jobs=args.n_jobs))
        return 0

    if not args.entity_type or not args.key:
        logger.error("forecast needs --entity-type and --key (or --all).")
        return 2
    entity_key = EntityKey(args.entity_type, args.key, args.geo_unit_id)
    prediction_set = service.forecast_entity(
        entity_key, horizon=args.horizon, granularity=args.granularity, persist=not args.no_persist
    )
    _emit(prediction_set.to_dict())
    return 0


def cmd_outbreaks(args) -> int:
    store = SQLiteStore(args.db)
    detector = OutbreakDetector(
        thresholds=OutbreakThresholdTable.from_settings(),
        source=_build_source(args, store),
        alert_store=store,
    )
    as_of = datetime.fromisoformat(args.as_of) if args.as_of else None
    result = detector.run(as_of)
    result["alerts"] = [alert.to_dict() for alert in result["alerts"]]
    _emit(result)
    return 1 if result["errors"] else 0


def cmd_alerts(args) -> int:
    store = SQLiteStore(args.db)
    alerts = store.get_active_alerts(
        disease_type=args.disease_type,
        geo_unit_id=args.geo_unit_id,
        risk_level=RiskLevel(args.risk_level) if args.risk_level else None,
    )
    _emit([alert.to_dict() for alert in alerts])
    return 0


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="healthcast", description=settings.app.name)
    parser.add_argument("--db", default=str(settings.database_path), help="SQLite database path.")
    parser.add_argument("--source", choices=("sqlite", "csv"), default="sqlite", help="Where raw records are read from.")
    parser.add_argument("--data-dir", default=None, help="Directory holding the CSV extracts.")
    parser.add_argument("--log-level", default=None, help="Override the configured log level.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    forecast = subparsers.add_parser("forecast", help="Forecast one entity, or every known entity with --all.")
    forecast.add_argument("--entity-type")
    forecast.add_argument("--key")
    forecast.add_argument("--geo-unit-id", type=int, default=None)
    forecast.add_argument("--horizon", type=_positive_int, default=settings.forecast.default_horizon)
    forecast.add_argument("--granularity", choices=GRANULARITY_CHOICES, default="auto")
    forecast.add_argument("--all", action="store_true")
    forecast.add_argument("--n-jobs", type=int, default=None)
    forecast.add_argument("--no-persist", action="store_true")
    forecast.set_defaults(handler=cmd_forecast)

    outbreaks = subparsers.add_parser("outbreaks", help="Recompute all outbreak alerts.")
    outbreaks.add_argument("--as-of", default=None, help="ISO timestamp to evaluate at (default: now).")
    outbreaks.set_defaults(handler=cmd_outbreaks)

    alerts = subparsers.add_parser("alerts", help="List active outbreak alerts.")
    alerts.add_argument("--disease-type", default=None)
    alerts.add_argument("--geo-unit-id", type=int, default=None)
    alerts.add_argument("--risk-level", choices=[r.value for r in RiskLevel], default=None)
    alerts.set_defaults(handler=cmd_alerts)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    logger.info(f"{settings.app.name} v{settings.app.version}: running '{args.command}'.")
    try:
        return args.handler(args)
    except HealthcastError as e:
        logger.error(f"'{args.command}' failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
