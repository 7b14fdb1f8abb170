"""
BTC Multi-Exchange Pipeline - Main Entry Point

Usage:
    python main.py fetch --mode full        # Fetch full history from 2017-07-01
    python main.py fetch --mode increment   # Fetch days after the last saved one
    python main.py train --epochs 100       # Train the regime classifier
    python main.py predict --exchange Binance
"""

import argparse
import logging
import sys

from dotenv import load_dotenv
import structlog

# Load environment variables
load_dotenv()

# Configure logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="BTC multi-exchange daily data pipeline and regime classifier"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser("fetch", help="Fetch, validate and save daily candles")
    fetch.add_argument(
        "--mode",
        choices=["full", "increment"],
        default="increment",
        help="full refetches from the history start; increment continues after the last saved day",
    )

    train = subparsers.add_parser("train", help="Train the regime classifier")
    train.add_argument(
        "--epochs",
        type=int,
        default=None,
        help="Training epochs (default: BTC_TRAIN_EPOCHS or 100)",
    )

    predict = subparsers.add_parser("predict", help="Classify the latest 270-day window")
    predict.add_argument(
        "--exchange",
        default="Binance",
        help="Exchange whose closes feed the features (default: Binance)",
    )

    return parser.parse_args(argv)


def run_fetch(args) -> int:
    from data.pipeline.analysis import summarize
    from data.pipeline.manager import DataPipeline, FetchMode

    pipeline = DataPipeline()
    result = pipeline.run(FetchMode(args.mode))

    print("=" * 60)
    print(f"Mode: {result.mode.value}  ({result.start_date} → {result.end_date})")
    for source, count in result.records_by_source.items():
        print(f"  {source}: {count} records")
    for error in result.errors:
        print(f"  ERROR {error}")

    if result.validation is not None:
        stats = result.validation.stats
        print(f"Total days: {stats.total_days}")
        print(f"Valid days: {stats.valid_days} ({stats.completeness_pct:.2f}%)")
        for exchange, pct in stats.coverage_pct().items():
            print(f"  {exchange} coverage: {pct:.2f}%")
        for issue, count in result.validation.anomalies.counts().items():
            print(f"  {issue}: {count}")
        for line in summarize(result.analysis):
            print(line)

    print(f"Series length: {result.series_length}")
    print("=" * 60)
    return 0


def run_train(args) -> int:
    from training.regime_training import train_regime_classifier

    result = train_regime_classifier(epochs=args.epochs)

    print("=" * 60)
    print(f"Samples: {result.samples} {result.class_counts}")
    print(f"Epochs: {result.epochs}")
    print(f"Loss: {result.final_loss:.4f}  Accuracy: {result.final_accuracy:.4f}")
    if result.final_val_loss is not None:
        print(f"Val loss: {result.final_val_loss:.4f}  Val accuracy: {result.final_val_accuracy:.4f}")
    print(f"Model saved to {result.model_dir}")
    print("=" * 60)
    return 0


def run_predict(args) -> int:
    from data.pipeline.queries import QueryError, error_envelope, load_series, predict_latest
    from regime.classifier import RegimeClassifier

    classifier = RegimeClassifier.load()
    series = load_series()

    try:
        data = predict_latest(series, classifier, exchange=args.exchange)
    except QueryError as e:
        logger.error("Prediction failed", **error_envelope(e)["error"])
        return 1

    print("=" * 60)
    print(f"As of {data['asOf']} ({data['exchange']})")
    for regime, probability in data["prediction"].items():
        print(f"  {regime:<10} {probability:.4f}")
    print(f"Confidence: {data['confidence']:.4f}")
    print("=" * 60)
    return 0


COMMANDS = {
    "fetch": run_fetch,
    "train": run_train,
    "predict": run_predict,
}


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, args.log_level))

    logger.info("BTC pipeline starting", command=args.command)

    try:
        return COMMANDS[args.command](args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1
    except Exception as e:
        logger.exception("Fatal error", error=str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
