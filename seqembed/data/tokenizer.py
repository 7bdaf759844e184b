"""
SeqEmbed Vocabulary
====================
Wraps a HuggingFace ``tokenizers`` Tokenizer saved as JSON. One Vocab is
loaded per input stream; in similarity mode both streams may share a file.

Every encoded sentence ends with EOS; padding uses the PAD id, which is
also what the batch masks are derived from.

Usage:
    >>> vocab = Vocab.load("model/vocab.json")
    >>> vocab.encode("hello world")
    [17, 42, 3]
    >>> Vocab.build_word_level(["hello world", "another line"]).save("vocab.json")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

from tokenizers import Tokenizer, models, pre_tokenizers, trainers

logger = logging.getLogger(__name__)

# Every vocabulary must contain these
PAD_TOKEN = "<pad>"
UNK_TOKEN = "<unk>"
BOS_TOKEN = "<bos>"
EOS_TOKEN = "<eos>"

SPECIAL_TOKENS = [PAD_TOKEN, UNK_TOKEN, BOS_TOKEN, EOS_TOKEN]


class Vocab:
    """
    Token ↔ id mapping for one input stream.

    Parameters
    ----------
    tokenizer : tokenizers.Tokenizer
        Underlying tokenizer. It must contain the special tokens.
    """

    def __init__(self, tokenizer: Tokenizer):
        for token in SPECIAL_TOKENS:
            if tokenizer.token_to_id(token) is None:
                raise ValueError(f"Vocabulary is missing special token {token}")
        self.tokenizer = tokenizer

    # ─── Construction ───────────────────────────────────────────────────

    @classmethod
    def load(cls, path: Union[str, Path]) -> Vocab:
        """
        Load a tokenizer JSON file.

        Raises
        ------
        FileNotFoundError
            If the file does not exist.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Vocabulary file not found: {path}")
        vocab = cls(Tokenizer.from_file(str(path)))
        logger.info(f"Vocabulary loaded from {path} (size={vocab.size})")
        return vocab

    @classmethod
    def build_word_level(
        cls,
        texts: Iterable[str],
        vocab_size: int = 32000,
        min_frequency: int = 1,
    ) -> Vocab:
        """
        Train a whitespace word-level vocabulary.

        Parameters
        ----------
        texts : iterable of str
            Training sentences.
        vocab_size : int
            Maximum vocabulary size, special tokens included.
        min_frequency : int
            Minimum count for a word to be kept.
        """
        non_empty = [t for t in texts if t and t.strip()]
        if not non_empty:
            raise ValueError("Cannot build a vocabulary from empty text.")

        tokenizer = Tokenizer(models.WordLevel(unk_token=UNK_TOKEN))
        tokenizer.pre_tokenizer = pre_tokenizers.WhitespaceSplit()
        trainer = trainers.WordLevelTrainer(
            vocab_size=vocab_size,
            min_frequency=min_frequency,
            special_tokens=SPECIAL_TOKENS,
            show_progress=False,
        )
        tokenizer.train_from_iterator(non_empty, trainer=trainer)
        vocab = cls(tokenizer)
        logger.info(f"Word-level vocabulary built (size={vocab.size})")
        return vocab

    # ─── Encoding ───────────────────────────────────────────────────────

    def encode(self, text: str, max_length: Optional[int] = None) -> list[int]:
        """
        Encode a sentence to ids, appending EOS.

        Sentences longer than ``max_length`` are truncated and keep EOS as
        their last token.
        """
        if not isinstance(text, str):
            raise TypeError(f"Expected str, got {type(text).__name__}")

        ids = self.tokenizer.encode(text, add_special_tokens=False).ids if text.strip() else []
        ids = ids + [self.eos_id]

        if max_length is not None and len(ids) > max_length:
            ids = ids[:max_length]
            ids[-1] = self.eos_id
        return ids

    def decode(self, ids: list[int]) -> str:
        if not ids:
            return ""
        return self.tokenizer.decode(ids, skip_special_tokens=True)

    # ─── Token ID Lookups ───────────────────────────────────────────────

    @property
    def pad_id(self) -> int:
        return self.tokenizer.token_to_id(PAD_TOKEN)

    @property
    def unk_id(self) -> int:
        return self.tokenizer.token_to_id(UNK_TOKEN)

    @property
    def eos_id(self) -> int:
        return self.tokenizer.token_to_id(EOS_TOKEN)

    @property
    def size(self) -> int:
        return self.tokenizer.get_vocab_size()

    # ─── Save ───────────────────────────────────────────────────────────

    def save(self, path: Union[str, Path]) -> None:
        """Save to a JSON file, creating parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.tokenizer.save(str(path))
        logger.info(f"Vocabulary saved to {path}")

    def __repr__(self) -> str:
        return f"Vocab(size={self.size})"
