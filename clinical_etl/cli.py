"""
Command-line interface for the clinical tabular loading system.

    clinical_etl load definitions/actigraphy.yaml [--subject-code 1234GX]
    clinical_etl sleep-stage 1234GX --parent-path /data/T --general-path T:/ --config sleep.yaml

Database connection settings come from CLINICAL_ETL_* environment variables
(see config.config_manager).
"""

import argparse
import dataclasses
import logging
import os
import sys

from pathlib import Path
from typing import Optional

import pyodbc

from .config.config_manager import ENV_PREFIX, get_config_manager
from .config.processing_defaults import ProcessingDefaults
from .database.record_store import SqlServerRecordStore
from .exceptions import ETLError
from .loaders.sleep_stage_loader import SleepStageConfig, SleepStageLoader
from .processing.database_loader import loader_from_definition


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clinical_etl", description="Declarative clinical data loader")
    parser.add_argument("--log-level", choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
                        help=f"Logging level (default: ${ENV_PREFIX}LOG_LEVEL or {ProcessingDefaults.LOG_LEVEL})")
    parser.add_argument("--log-file", help="Also write log output to this file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    load_parser = subparsers.add_parser("load", help="Load a source file described by a definition file")
    load_parser.add_argument("definition", help="Load definition (.yaml, .yml or .json)")
    load_parser.add_argument("--subject-code", help="Load every row for this existing subject")

    sleep_parser = subparsers.add_parser("sleep-stage", help="Load scored sleep epochs for one subject")
    sleep_parser.add_argument("subject_code", help="Subject code, e.g. 1234GX")
    sleep_parser.add_argument("--parent-path", required=True, help="Directory holding the subject directories")
    sleep_parser.add_argument("--general-path", required=True, help="Source location recorded with the load")
    sleep_parser.add_argument("--config", required=True, help="Sleep stage config YAML (user_email, names)")

    return parser


def setup_logging(log_level: str, log_file: Optional[str] = None) -> None:
    """Configure root handlers unless the host application already did."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(file_handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def create_record_store(config_manager) -> SqlServerRecordStore:
    database_config = config_manager.database_config
    return SqlServerRecordStore(
        connection_string=database_config.connection_string,
        target_schema=database_config.target_schema,
        connection_timeout=database_config.connection_timeout,
    )


def run_load(args, config_manager, logger) -> int:
    definition = config_manager.load_definition(args.definition)
    if args.subject_code:
        definition = dataclasses.replace(definition, subject_code=args.subject_code)

    store = create_record_store(config_manager)
    try:
        loader = loader_from_definition(definition, store, config_manager.loader_settings)
        try:
            result = loader.load_data()
        finally:
            loader.close()
    finally:
        store.close()

    logger.info(f"Load of {definition.source.path} completed: {len(result.subject_codes)} subjects, "
                f"{result.events_inserted} events, {len(result.warnings)} warnings")
    return 0 if result.success else 1


def run_sleep_stage(args, config_manager, logger) -> int:
    config = SleepStageConfig.from_yaml(args.config)
    store = create_record_store(config_manager)
    try:
        loader = SleepStageLoader(args.subject_code, args.parent_path, args.general_path, store, config)
        loaded = loader.load_subject()
    finally:
        store.close()

    logger.info(f"Sleep stage load of {args.subject_code}: {'LOADED' if loaded else 'NOT LOADED'}")
    return 0 if loaded else 1


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the CLI application.

    Args:
        args: Optional command line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parsed = build_parser().parse_args(sys.argv[1:] if args is None else args)
    log_level = parsed.log_level or os.environ.get(f"{ENV_PREFIX}LOG_LEVEL", ProcessingDefaults.LOG_LEVEL)
    setup_logging(log_level, parsed.log_file)
    logger = logging.getLogger(__name__)
    if log_level.upper() == "DEBUG":
        ProcessingDefaults.log_summary(logger)

    try:
        config_manager = get_config_manager()
        if parsed.command == "load":
            return run_load(parsed, config_manager, logger)
        return run_sleep_stage(parsed, config_manager, logger)
    except KeyboardInterrupt:
        logger.error("Processing interrupted by user")
        return 1
    except (ETLError, pyodbc.Error) as e:
        logger.error(f"Load failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
