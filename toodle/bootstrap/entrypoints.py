"""
bootstrap/entrypoints.py - Application entry points

Provides the API server entry point and the `toodle` command.
"""

from __future__ import annotations
import argparse
import json
import logging
import sys

logger = logging.getLogger("bootstrap.entrypoints")


class JSONFormatter(logging.Formatter):
    def format(self, record):
        return json.dumps({
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        })


def setup_logging(level: str = "INFO", log_file: str = None, json_format: bool = False) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        json_format: Use JSON format for logs
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def api_main(args: list = None) -> None:
    """
    API server entry point.

    Args:
        args: Command line arguments
    """
    parser = argparse.ArgumentParser(
        description="Toodle Link Graph API Server",
        prog="toodle-api",
    )

    parser.add_argument(
        "-c", "--config",
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        help="API port",
        default=None,
    )
    parser.add_argument(
        "-H", "--host",
        help="API host",
        default=None,
    )
    parser.add_argument(
        "-w", "--workers",
        type=int,
        help="Number of workers",
        default=None,
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides config)",
    )

    parsed = parser.parse_args(args)

    try:
        from .app import ToodleApp

        app = ToodleApp(parsed.config)
        app.build()

        logging_config = app.config.logging
        setup_logging(
            level=parsed.log_level or logging_config.level,
            log_file=logging_config.log_file,
            json_format=logging_config.json_logs,
        )

        # Override config with CLI args
        if parsed.port:
            app.config.api.port = parsed.port
        if parsed.host:
            app.config.api.host = parsed.host
        if parsed.workers:
            app.config.api.workers = parsed.workers

        app.run_api()

    except KeyboardInterrupt:
        print("\nShutting down...")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


def config_main(args: list = None) -> int:
    """Print the effective configuration as JSON."""
    parser = argparse.ArgumentParser(
        description="Show effective Toodle configuration",
        prog="toodle config",
    )
    parser.add_argument(
        "-c", "--config",
        help="Path to configuration file",
        default=None,
    )
    parsed = parser.parse_args(args)

    from .config import load_config

    print(json.dumps(load_config(parsed.config).to_dict(), indent=2))
    return 0


def main():
    """Main entry point for the package."""
    command = sys.argv[1] if len(sys.argv) > 1 else "--help"

    if command == "api":
        api_main(sys.argv[2:])
    elif command == "config":
        sys.exit(config_main(sys.argv[2:]))
    else:
        print("Toodle Link Graph Engine v1.0.0")
        print()
        print("Usage: toodle <command> [options]")
        print()
        print("Commands:")
        print("  api      Start API server")
        print("  config   Show effective configuration")
        print()
        print("Use '<command> --help' for command-specific help.")
        if command not in ["-h", "--help"]:
            sys.exit(2)


if __name__ == "__main__":
    main()
