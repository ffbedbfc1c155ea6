"""
Anchor Tag Locator batch runner.

Computes position estimates for every tag from the observations recorded
since the last computed result, then exits.
"""

import sys
import logging
import argparse

import config
from atl_core.domain import ResultAssembler, AssemblerConfig
from atl_core.io import SQLiteDataStore, RetrievalError
from atl_core.localization import RssiDistanceModel, MultilaterationConfig
from atl_core.metrics import get_metrics

logging.basicConfig(
    level=getattr(logging, config.LOGGING_CONFIG["level"]),
    format=config.LOGGING_CONFIG["format"]
)
logger = logging.getLogger(__name__)


def build_assembler(store, max_workers: int) -> ResultAssembler:
    """Wire an assembler from the deployment configuration."""
    loc = config.LOCALIZATION_CONFIG
    assembler_config = AssemblerConfig(
        reference_elevation_m=loc["reference_elevation_m"],
        bucket_width_s=loc["bucket_width_s"],
        tag_ping_interval_s=loc["tag_ping_interval_s"],
        min_anchors=loc["min_anchors"],
        max_workers=max_workers,
        solver_config=MultilaterationConfig(**config.SOLVER_CONFIG),
    )
    distance_model = RssiDistanceModel(**config.DISTANCE_MODEL_CONFIG)
    return ResultAssembler(store, assembler_config, distance_model=distance_model)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Anchor Tag Locator batch runner")
    parser.add_argument("--db", default=config.STORE_CONFIG["db_path"],
                        help="SQLite database path")
    parser.add_argument("--workers", type=int,
                        default=config.LOCALIZATION_CONFIG["max_workers"],
                        help="Solver threads per tag")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--metrics", action="store_true", help="Print metrics summary")
    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        store = SQLiteDataStore(args.db)
    except RetrievalError as e:
        logger.error("Cannot open store: %s", e)
        return 1

    with store:
        assembler = build_assembler(store, args.workers)
        try:
            summary = assembler.run()
        except RetrievalError:
            logger.error("Run aborted on retrieval failure")
            return 1

    logger.info(
        "Persisted %d estimates (%d low confidence), %d persistence failures",
        summary.estimates_persisted, summary.low_confidence, summary.persistence_failures,
    )
    if args.metrics:
        get_metrics().print_summary()
    return 0


if __name__ == "__main__":
    sys.exit(main())
