"""
Centralized configuration defaults for tabular load operations.

This module defines operational configuration constants used throughout the system.
These are loading infrastructure settings (not study-specific), shared across all
load definitions. Environment variables and CLI arguments can override these defaults
at runtime.

Single Source of Truth: Change these values once; all modules automatically use updated defaults.
"""


class ProcessingDefaults:
    """
    Centralized operational configuration for tabular loads.

    All values are defaults that can be overridden:
    - CLINICAL_ETL_PROGRESS_INTERVAL=5000 clinical_etl load definition.yaml
    - clinical_etl load definition.yaml --log-level DEBUG

    These settings apply consistently across all loads unless explicitly overridden.
    """

    # Row processing
    PROGRESS_INTERVAL = 1000  # Log a progress line every N rows
    MULTIPLE_DELIMITER = ";"  # Separator of multi-valued cells
    EMPTY_CELL_MARKERS = ()  # Extra cell values treated as empty (blank cells always are)

    # Event time
    REFERENCE_TIMEZONE = "America/New_York"  # Zone attached to parsed realtime values

    # Database
    CONNECTION_TIMEOUT = 30  # Connection timeout in seconds
    TARGET_SCHEMA = "dbo"  # Schema holding the target tables

    # Logging
    LOG_LEVEL = "INFO"  # Default logging level (CRITICAL, ERROR, WARNING, INFO, DEBUG)

    @classmethod
    def to_dict(cls) -> dict:
        """
        Export all defaults as a dictionary.

        Returns:
            Dictionary of all ProcessingDefaults class attributes.
        """
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if not key.startswith('_') and key.isupper()
        }

    @classmethod
    def log_summary(cls, logger=None):
        """
        Log a summary of all operational defaults.

        Args:
            logger: Optional logger instance. If None, prints to stdout.
        """
        config_dict = cls.to_dict()
        summary = "\n".join([f"  {key}: {value}" for key, value in sorted(config_dict.items())])
        message = f"Processing Configuration Defaults:\n{summary}"

        if logger:
            logger.info(message)
        else:
            print(message)
