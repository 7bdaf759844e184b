#!/usr/bin/env python3
"""
SeqEmbed — Model Initialization Script
========================================
Writes a randomly initialized model and a word-level vocabulary built
from a text file. The result is a complete model directory that
scripts/embed.py can run end to end, which is what smoke tests need.

Usage:
    python scripts/init_model.py --text corpus.txt --output-dir model_smoke
    python scripts/init_model.py --smoke-test --text corpus.txt
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from seqembed.config import EmbedConfig
from seqembed.data.tokenizer import Vocab
from seqembed.inference.embedder import usage_for
from seqembed.model.weights import init_random_weights

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="SeqEmbed random model initialization")
    parser.add_argument("--config", type=str, default="configs/default.yaml")
    parser.add_argument("--smoke-test", action="store_true")
    parser.add_argument("--similarity", action="store_true")
    parser.add_argument("--text", type=str, required=True,
                        help="Text file the vocabulary is built from")
    parser.add_argument("--output-dir", type=str, default=None)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()

    if args.smoke_test:
        config = EmbedConfig.for_smoke_test(compute_similarity=args.similarity)
    else:
        config = EmbedConfig.from_yaml(args.config)

    output_dir = Path(args.output_dir or Path(config.inference.model_path).parent)
    seed = args.seed if args.seed is not None else config.inference.seed

    text_path = Path(args.text)
    if not text_path.exists():
        raise FileNotFoundError(f"Text file not found: {text_path}")
    with open(text_path, "r", encoding="utf-8") as f:
        lines = [line.rstrip("\n") for line in f]

    vocab = Vocab.build_word_level(lines, vocab_size=config.model.dim_vocab)
    vocab_path = output_dir / "vocab.json"
    vocab.save(vocab_path)

    # vocab.size <= dim_vocab, so every id has a row in the embedding table
    model_path = init_random_weights(
        config.model, output_dir / "model.safetensors", usage_for(config), seed
    )

    logger.info(f"Model ready: weights={model_path}, vocab={vocab_path}")


if __name__ == "__main__":
    main()
