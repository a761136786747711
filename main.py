#!/usr/bin/env python
# main.py - Entry point for online adaptation
"""
Entry point for the online adaptation system.

Runs the adapt-then-translate loop, or writes a randomly initialized
baseline model for a configuration.
"""

import argparse
import logging
import sys
from enum import Enum
from typing import List, Optional

import torch

from config.schemas import RootConfig, check_consistency, load_config
from models.graph import ComputationGraph
from models.seq2seq import Seq2SeqModel
from training.adaptation_trainer import AdaptationTrainer
from utils.exceptions import AdaptationSystemError
from utils.gpu_utils import resolve_device
from utils.logging_config import setup_logging
from vocabulary.vocab import load_vocabs

logger = logging.getLogger(__name__)


class OperationMode(Enum):
    """System operation modes"""
    ADAPT = "adapt"
    INIT_MODEL = "init-model"


def adapt(config: RootConfig, show_progress: Optional[bool] = None) -> int:
    """Run online adaptation over the configured input; returns the exit code."""
    trainer = AdaptationTrainer(config, show_progress=show_progress)
    trainer.run()
    return 0


def init_model(config: RootConfig, output: Optional[str] = None) -> int:
    """
    Write a randomly initialized model matching the configuration.

    Args:
        config: Validated configuration (vocabularies are read for dimensions)
        output: Destination path; defaults to ``data.model``

    Returns:
        Exit code
    """
    check_consistency(config, require_streams=False)
    if config.training.seed is not None:
        torch.manual_seed(config.training.seed)

    vocabs = load_vocabs(config.data.vocabs, config.model.dim_vocabs)
    model_config = config.model.with_vocab_dims([len(v) for v in vocabs])
    builder = Seq2SeqModel(model_config, config.training)

    graph = ComputationGraph("init", resolve_device(config.hardware.device))
    builder.initialize(graph)
    builder.save(graph, output or config.data.model)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Online adaptation for sequence-to-sequence translation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create a baseline model for experiments
  python main.py --mode init-model --config config/adapt.yaml --output model.pt

  # Adapt on train_sets while translating input
  python main.py --mode adapt --config config/adapt.yaml

  # Override settings from the command line
  python main.py --mode adapt --config config/adapt.yaml --set training.learn_rate=0.01
        """
    )

    parser.add_argument(
        '--mode',
        type=str,
        choices=[m.value for m in OperationMode],
        default='adapt',
        help='Operation mode'
    )

    parser.add_argument(
        '--config',
        type=str,
        help='Configuration file (YAML)'
    )

    parser.add_argument(
        '--set',
        dest='overrides',
        action='append',
        default=[],
        metavar='KEY=VALUE',
        help='Override a configuration value, e.g. training.after_batches=2'
    )

    parser.add_argument(
        '--output',
        type=str,
        help='Output path for init-model (defaults to data.model)'
    )

    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable the progress bar'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Verbose output'
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, args.overrides)
    except AdaptationSystemError as e:
        setup_logging(log_level="INFO")
        logger.error(f"❌ {e}")
        return 1

    log_level = "DEBUG" if args.verbose else config.logging.log_level
    setup_logging(log_dir=config.logging.log_dir, log_level=log_level,
                  log_to_file=config.logging.log_to_file)

    mode = OperationMode(args.mode)
    try:
        if mode == OperationMode.INIT_MODEL:
            return init_model(config, args.output)
        return adapt(config, show_progress=False if args.no_progress else None)
    except AdaptationSystemError as e:
        logger.error(f"❌ {type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
