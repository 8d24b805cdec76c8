"""
Centralized application initializer.

This component is responsible for parsing the shared command-line arguments,
loading the configuration and building the VaultService. It gives every
command a single, reliable way to construct the application's core.
"""

import argparse
import logging
from typing import Any, Dict, Tuple

from components.vault_service.main import VaultService

from shared.config import Config, load_config

logger = logging.getLogger(__name__)


def create_arg_parser() -> argparse.ArgumentParser:
    """
    Creates and returns the command-line argument parser with the arguments
    shared by every subcommand.

    Returns:
        An ArgumentParser instance with all common arguments defined.
    """
    parser = argparse.ArgumentParser(description="Semantic search for your notes.")
    parser.add_argument(
        "-c",
        "--config",
        help="Path to the config.toml file to use.",
    )
    parser.add_argument(
        "--base-dir",
        help="Override the directory holding the index and models.",
    )
    parser.add_argument(
        "--model",
        help="Override the embedding model name.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser


def _overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if getattr(args, "base_dir", None):
        logger.info(f"Overriding base directory with: {args.base_dir}")
        overrides.setdefault("paths", {})["base_dir"] = args.base_dir
    if getattr(args, "model", None):
        logger.info(f"Overriding embedding model with: {args.model}")
        overrides.setdefault("embedding_model", {})["model_name"] = args.model
    return overrides


def initialize_service_from_args(
    args: argparse.Namespace,
) -> Tuple[Config, VaultService]:
    """
    Loads configuration and initializes the service based on command-line
    arguments.

    Args:
        args: Parsed command-line arguments from an ArgumentParser.

    Returns:
        A tuple containing the loaded Config object and the VaultService.

    Raises:
        ConfigError: The configuration file is missing or invalid.
    """
    config = load_config(
        config_path=getattr(args, "config", None),
        overrides=_overrides_from_args(args),
    )
    service = VaultService(config=config)
    logger.debug("Core services initialized.")
    return config, service
