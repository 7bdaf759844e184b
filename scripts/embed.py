#!/usr/bin/env python3
"""
SeqEmbed — Embedding Script
=============================
Embeds every line of an input file with a trained sentence encoder, or
scores line-aligned sentence pairs from two files with --similarity.

Command-line flags override the values from the YAML config.

Usage:
    python scripts/embed.py --config configs/default.yaml --input corpus.txt
    python scripts/embed.py --config configs/default.yaml \\
        --similarity --input a.txt b.txt --output scores.txt
    python scripts/embed.py --smoke-test
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from seqembed.config import EmbedConfig
from seqembed.inference.embed import EmbedTask

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


def apply_overrides(config: EmbedConfig, args: argparse.Namespace) -> EmbedConfig:
    """Copy command-line overrides into the inference config."""
    overrides = {}
    if args.model:
        overrides["model_path"] = args.model
    if args.vocabs:
        overrides["vocabs"] = args.vocabs
    if args.input:
        overrides["inputs"] = args.input
    if args.output:
        overrides["output"] = args.output
    if args.binary:
        overrides["binary"] = True
    if args.devices:
        overrides["devices"] = args.devices if args.devices != ["auto"] else "auto"
    if args.precision:
        overrides["precision"] = args.precision
    if args.mini_batch:
        overrides["mini_batch"] = args.mini_batch
    if args.workspace is not None:
        overrides["workspace_mb"] = args.workspace
    if args.similarity:
        overrides["compute_similarity"] = True
    if args.ordered:
        overrides["ordered_output"] = True

    if not overrides:
        return config
    return replace(config, inference=replace(config.inference, **overrides))


def main():
    parser = argparse.ArgumentParser(description="SeqEmbed sentence embedding")
    parser.add_argument("--config", type=str, default="configs/default.yaml")
    parser.add_argument("--smoke-test", action="store_true",
                        help="Use the tiny CPU smoke-test configuration")
    parser.add_argument("--model", type=str, default=None,
                        help="Path to model weights (.safetensors)")
    parser.add_argument("--vocabs", type=str, nargs="+", default=None)
    parser.add_argument("--input", type=str, nargs="+", default=None,
                        help="Input file(s), '-' for stdin")
    parser.add_argument("--output", type=str, default=None,
                        help="Output file, '-' or 'stdout' for standard output")
    parser.add_argument("--binary", action="store_true",
                        help="Write binary records instead of text")
    parser.add_argument("--devices", type=str, nargs="+", default=None,
                        help="e.g. cpu, cuda:0 cuda:1, or auto")
    parser.add_argument("--precision", type=str, nargs="+", default=None,
                        choices=["float32", "float16"])
    parser.add_argument("--mini-batch", type=int, default=None)
    parser.add_argument("--workspace", type=int, default=None,
                        help="Workspace to reserve per device in MB")
    parser.add_argument("--similarity", action="store_true",
                        help="Score sentence pairs from two inputs")
    parser.add_argument("--ordered", action="store_true",
                        help="Write records in input order")
    args = parser.parse_args()

    if args.smoke_test:
        config = EmbedConfig.for_smoke_test(compute_similarity=args.similarity)
    else:
        config = EmbedConfig.from_yaml(args.config)

    config = apply_overrides(config, args)
    logger.info(f"\n{config}")

    n_written = EmbedTask(config).run()
    logger.info(f"Wrote {n_written} records to {config.inference.output}")


if __name__ == "__main__":
    main()
