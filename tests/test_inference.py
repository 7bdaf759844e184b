#!/usr/bin/env python3
"""
Tests for extraction, the vector collector, the replica pool, the batch
dispatcher and the end-to-end embedding task.

Run this file:
    python -m pytest tests/test_inference.py -v
"""

import random
import sys
import time
from dataclasses import replace
from pathlib import Path

import numpy as np
import pytest
import torch

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

SENTENCES = [
    "the cat sat on the mat",
    "a dog barked",
    "the dog sat",
    "cats and dogs",
    "on the mat a cat",
    "barked",
    "the mat",
    "a cat and a dog sat on the mat",
    "dogs sat",
    "the end",
]


def smoke_config(tmp_path, compute_similarity=False, **inference_overrides):
    from seqembed.config import EmbedConfig
    config = EmbedConfig.for_smoke_test(compute_similarity=compute_similarity)
    inference = replace(
        config.inference,
        model_path=str(tmp_path / "model" / "model.safetensors"),
        vocabs=[str(tmp_path / "model" / "vocab.json")],
        output=str(tmp_path / "vectors.txt"),
        **inference_overrides,
    )
    return replace(config, inference=inference)


def prepare_model(config, tmp_path):
    """Write a vocabulary, random weights and input files for ``config``."""
    from seqembed.data.tokenizer import Vocab
    from seqembed.inference.embedder import usage_for
    from seqembed.model import init_random_weights

    vocab = Vocab.build_word_level(SENTENCES, vocab_size=config.model.dim_vocab)
    vocab.save(config.inference.vocabs[0])
    init_random_weights(config.model, config.inference.model_path, usage_for(config))

    inputs = []
    for k in range(len(config.inference.inputs)):
        lines = SENTENCES if k == 0 else list(reversed(SENTENCES))
        path = tmp_path / f"input_{k}.txt"
        path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
        inputs.append(str(path))
    return replace(config, inference=replace(config.inference, inputs=inputs))


class SlowModel:
    """Stand-in model: sleeps a random time, output depends only on the batch."""

    n_streams = 1

    def __init__(self, graph, model_config, usage):
        self.graph = graph

    def apply(self, batch):
        time.sleep(random.uniform(0.0, 0.02))
        ids = batch.ids.float()
        return torch.stack([ids.sum(dim=1), ids[:, 0], batch.mask.sum(dim=1)], dim=-1)


def random_batches(n_batches=8, seed=0):
    from seqembed.data.corpus import SentenceBatch, pad_sequences
    rng = random.Random(seed)
    batches, next_id = [], 0
    for _ in range(n_batches):
        size = rng.randint(1, 6)
        rows = [[rng.randint(4, 60) for _ in range(rng.randint(1, 9))] for _ in range(size)]
        batches.append(SentenceBatch(list(range(next_id, next_id + size)), [pad_sequences(rows, 0)]))
        next_id += size
    return batches


# =============================================================================
# Extraction Tests
# =============================================================================

class TestExtraction:
    """Tests for fp32/fp16 output extraction."""

    def test_float32_is_copied(self):
        from seqembed.inference import extract_vectors
        output = torch.arange(6, dtype=torch.float32).reshape(2, 3)
        flat = extract_vectors(output)
        output[0, 0] = 100.0
        assert flat.dtype == np.float32
        assert flat.tolist() == [0.0, 1.0, 2.0, 3.0, 4.0, 5.0]

    def test_float16_is_widened(self):
        from seqembed.inference import extract_vectors
        output = torch.tensor([[0.5, -1.25], [2.0, 0.1]], dtype=torch.float16)
        flat = extract_vectors(output)
        assert flat.dtype == np.float32
        assert np.allclose(flat, output.float().reshape(-1).numpy())

    @pytest.mark.parametrize("dtype", [torch.bfloat16, torch.float64])
    def test_unsupported_dtype(self, dtype):
        from seqembed.errors import UnsupportedPrecisionError
        from seqembed.inference import extract_vectors
        with pytest.raises(UnsupportedPrecisionError, match="Unknown embedding type"):
            extract_vectors(torch.zeros(2, 3, dtype=dtype))

    def test_split(self):
        from seqembed.inference import split_sentence_vectors
        vectors = split_sentence_vectors(np.arange(6, dtype=np.float32), emb_size=2)
        assert [v.tolist() for v in vectors] == [[0.0, 1.0], [2.0, 3.0], [4.0, 5.0]]
        with pytest.raises(ValueError):
            split_sentence_vectors(np.arange(5, dtype=np.float32), emb_size=2)


# =============================================================================
# Collector Tests
# =============================================================================

class TestCollector:
    """Tests for text/binary encodings and ordered output."""

    def test_text_format(self, tmp_path):
        from seqembed.inference import VectorCollector
        path = tmp_path / "out.txt"
        with VectorCollector(path) as collector:
            collector.write(3, np.array([0.5, 1.0, -2.0], dtype=np.float32))
        assert path.read_text() == "3\t0.5 1 -2\n"

    def test_binary_format(self, tmp_path):
        from seqembed.inference import VectorCollector, read_vectors
        path = tmp_path / "out.bin"
        with VectorCollector(path, binary=True) as collector:
            collector.write(7, np.array([1.5, 2.5], dtype=np.float32))
            collector.write(2, np.array([3.0, 4.0], dtype=np.float32))

        data = path.read_bytes()
        assert len(data) == 2 * (8 + 4 + 2 * 4)
        assert int.from_bytes(data[:8], "little") == 7
        assert int.from_bytes(data[8:12], "little") == 2

        vectors = read_vectors(path, binary=True)
        assert sorted(vectors) == [2, 7]
        assert vectors[7].tolist() == [1.5, 2.5]

    def test_text_round_trip(self, tmp_path):
        from seqembed.inference import VectorCollector, read_vectors
        path = tmp_path / "out.txt"
        expected = {i: np.random.rand(5).astype(np.float32) for i in range(4)}
        with VectorCollector(path) as collector:
            for i in (2, 0, 3, 1):
                collector.write(i, expected[i])
        vectors = read_vectors(path)
        for i, vector in expected.items():
            assert np.array_equal(vectors[i], vector)

    def test_ordered_output(self, tmp_path):
        from seqembed.inference import VectorCollector
        path = tmp_path / "out.txt"
        with VectorCollector(path, ordered=True) as collector:
            for i in (2, 0, 3, 1):
                collector.write(i, np.array([float(i)], dtype=np.float32))
            assert collector.n_written == 4
        ids = [int(line.split("\t")[0]) for line in path.read_text().splitlines()]
        assert ids == [0, 1, 2, 3]

    def test_ordered_output_with_gap(self, tmp_path):
        from seqembed.inference import VectorCollector
        path = tmp_path / "out.txt"
        with VectorCollector(path, ordered=True) as collector:
            collector.write(3, np.array([3.0], dtype=np.float32))
            collector.write(1, np.array([1.0], dtype=np.float32))
        ids = [int(line.split("\t")[0]) for line in path.read_text().splitlines()]
        assert ids == [1, 3]

    def test_write_before_open(self, tmp_path):
        from seqembed.inference import VectorCollector
        with pytest.raises(RuntimeError):
            VectorCollector(tmp_path / "out.txt").write(0, np.zeros(2, dtype=np.float32))

    def test_stdout(self, capsys):
        from seqembed.inference import VectorCollector
        with VectorCollector("-") as collector:
            collector.write(0, np.array([1.0], dtype=np.float32))
        assert capsys.readouterr().out == "0\t1\n"


# =============================================================================
# Replica Pool & Dispatcher Tests
# =============================================================================

class TestReplicaPool:
    """Tests for per-device replica loading."""

    def test_one_replica_per_device(self, tmp_path):
        from seqembed.inference import ReplicaPool
        config = smoke_config(tmp_path, devices=["cpu", "cpu", "cpu"])
        pool = ReplicaPool(config, None, SlowModel)
        assert len(pool) == 3
        assert [r.index for r in pool] == [0, 1, 2]
        assert len({id(r.graph) for r in pool}) == 3
        assert all(r.graph.dtype == torch.float32 for r in pool)

    def test_load_failure(self, tmp_path):
        from seqembed.errors import ReplicaLoadError
        from seqembed.inference import ReplicaPool

        def broken_factory(graph, model_config, usage):
            raise RuntimeError("out of memory")

        config = smoke_config(tmp_path, devices=["cpu", "cpu"])
        with pytest.raises(ReplicaLoadError, match="out of memory"):
            ReplicaPool(config, None, broken_factory)

    def test_weights_shared(self, tmp_path):
        from seqembed.inference import ReplicaPool
        from seqembed.model import ModelWeights
        config = prepare_model(smoke_config(tmp_path, devices=["cpu", "cpu"]), tmp_path)
        pool = ReplicaPool(config, ModelWeights(config.inference.model_path))
        a, b = pool[0].graph, pool[1].graph
        assert len(a) == len(b) > 0
        assert torch.equal(a.params["encoder.embedding.weight"], b.params["encoder.embedding.weight"])
        assert a.params["encoder.embedding.weight"] is not b.params["encoder.embedding.weight"]


class TestDispatcher:
    """Tests for concurrent batch dispatch."""

    def _run(self, tmp_path, n_devices, name):
        from seqembed.inference import BatchDispatcher, ReplicaPool, VectorCollector, read_vectors
        config = smoke_config(tmp_path, devices=["cpu"] * n_devices)
        pool = ReplicaPool(config, None, SlowModel)
        path = tmp_path / name
        seen = []
        with VectorCollector(path) as collector:
            count = BatchDispatcher(pool, collector, progress=seen.append).run(random_batches())
        return count, sum(seen), read_vectors(path)

    def test_order_independence(self, tmp_path):
        """Four replicas with random delays match a single-replica run."""
        count_ref, _, reference = self._run(tmp_path, 1, "reference.txt")
        count, progressed, vectors = self._run(tmp_path, 4, "parallel.txt")

        expected_ids = {sid for batch in random_batches() for sid in batch.sentence_ids}
        assert count == count_ref == progressed == len(expected_ids)
        assert set(vectors) == set(reference) == expected_ids
        for sid, vector in reference.items():
            assert np.array_equal(vectors[sid], vector)

    def test_worker_replica_table(self, tmp_path):
        from seqembed.inference import BatchDispatcher, ReplicaPool, VectorCollector
        pool = ReplicaPool(smoke_config(tmp_path, devices=["cpu"] * 3), None, SlowModel)
        with VectorCollector(tmp_path / "out.txt") as collector:
            dispatcher = BatchDispatcher(pool, collector)
        assert [dispatcher.assignment[i].index for i in range(3)] == [0, 1, 2]

    def test_replica_used_by_one_thread(self, tmp_path):
        import threading
        from seqembed.inference import BatchDispatcher, ReplicaPool, VectorCollector

        threads = {}

        class RecordingModel(SlowModel):
            def apply(self, batch):
                threads.setdefault(id(self.graph), set()).add(threading.get_ident())
                return super().apply(batch)

        pool = ReplicaPool(smoke_config(tmp_path, devices=["cpu"] * 4), None, RecordingModel)
        with VectorCollector(tmp_path / "out.txt") as collector:
            BatchDispatcher(pool, collector).run(random_batches(n_batches=16))
        assert all(len(idents) == 1 for idents in threads.values())

    def test_first_error_is_raised(self, tmp_path):
        from seqembed.data.corpus import SentenceBatch, pad_sequences
        from seqembed.inference import BatchDispatcher, ReplicaPool, VectorCollector

        class FailingModel(SlowModel):
            def apply(self, batch):
                # random_batches never uses token 0 as a first token
                if batch.ids[0, 0].item() == 0:
                    raise ArithmeticError("bad batch")
                return super().apply(batch)

        pool = ReplicaPool(smoke_config(tmp_path, devices=["cpu"] * 2), None, FailingModel)
        batches = random_batches(n_batches=4)
        batches.append(SentenceBatch([1000], [pad_sequences([[0, 5]], 0)]))
        batches.extend(random_batches(n_batches=4, seed=1))
        with VectorCollector(tmp_path / "out.txt") as collector:
            with pytest.raises(ArithmeticError, match="bad batch"):
                BatchDispatcher(pool, collector).run(batches)

    def test_input_error_stops_workers(self, tmp_path):
        from seqembed.inference import BatchDispatcher, ReplicaPool, VectorCollector

        def broken_stream():
            yield from random_batches(n_batches=2)
            raise ValueError("corrupt input")

        pool = ReplicaPool(smoke_config(tmp_path, devices=["cpu"] * 2), None, SlowModel)
        with VectorCollector(tmp_path / "out.txt") as collector:
            with pytest.raises(ValueError, match="corrupt input"):
                BatchDispatcher(pool, collector).run(broken_stream())


# =============================================================================
# End-to-End Tests
# =============================================================================

class TestEmbedTask:
    """Tests for the full embedding run on CPU replicas."""

    def test_embedding_run(self, tmp_path):
        from seqembed.inference import EmbedTask, read_vectors
        config = prepare_model(smoke_config(tmp_path, devices=["cpu", "cpu"]), tmp_path)
        n_written = EmbedTask(config).run()

        vectors = read_vectors(config.inference.output)
        assert n_written == len(SENTENCES)
        assert sorted(vectors) == list(range(len(SENTENCES)))
        assert all(v.shape == (16,) for v in vectors.values())

    def test_binary_ordered_run(self, tmp_path):
        from seqembed.inference import EmbedTask, read_vectors
        config = smoke_config(
            tmp_path, devices=["cpu", "cpu"], binary=True, ordered_output=True, mini_batch=3
        )
        config = prepare_model(config, tmp_path)
        EmbedTask(config).run()

        data = Path(config.inference.output).read_bytes()
        first_id = int.from_bytes(data[:8], "little")
        assert first_id == 0
        assert len(read_vectors(config.inference.output, binary=True)) == len(SENTENCES)

    def test_same_vectors_for_any_device_count(self, tmp_path):
        from seqembed.inference import EmbedTask, read_vectors
        config = prepare_model(smoke_config(tmp_path, mini_batch=2), tmp_path)
        EmbedTask(config).run()
        single = read_vectors(config.inference.output)

        multi_config = replace(config, inference=replace(
            config.inference, devices=["cpu"] * 4, output=str(tmp_path / "multi.txt")
        ))
        EmbedTask(multi_config).run()
        multi = read_vectors(multi_config.inference.output)
        for sid, vector in single.items():
            assert np.allclose(multi[sid], vector, atol=1e-6)

    def test_similarity_run(self, tmp_path):
        """One score per sentence pair, identical pairs score 1."""
        from seqembed.inference import EmbedTask, read_vectors
        config = prepare_model(smoke_config(tmp_path, compute_similarity=True), tmp_path)
        n_written = EmbedTask(config).run()

        scores = read_vectors(config.inference.output)
        assert n_written == len(SENTENCES)
        assert all(v.shape == (1,) for v in scores.values())
        assert all(-1.0 - 1e-5 <= v[0] <= 1.0 + 1e-5 for v in scores.values())

        same = replace(config, inference=replace(
            config.inference,
            inputs=[config.inference.inputs[0]] * 2,
            output=str(tmp_path / "same.txt"),
        ))
        EmbedTask(same).run()
        assert all(abs(v[0] - 1.0) < 1e-4 for v in read_vectors(same.inference.output).values())

    def test_encoder_type_rejected(self, tmp_path):
        from seqembed.errors import CapabilityError
        from seqembed.inference import EmbedTask
        config = smoke_config(tmp_path)
        config = replace(config, model=replace(config.model, type="encoder"))
        with pytest.raises(CapabilityError, match="Could not cast to EncoderPooler"):
            EmbedTask(config)

    def test_vocab_larger_than_model_rejected(self, tmp_path):
        """An oversized vocabulary fails before any replica is loaded."""
        from seqembed.data.tokenizer import Vocab
        from seqembed.inference import EmbedTask
        config = prepare_model(smoke_config(tmp_path), tmp_path)
        words = [f"w{i}" for i in range(200)]
        big = Vocab.build_word_level([" ".join(words)], vocab_size=500)
        assert big.size > config.model.dim_vocab
        big.save(config.inference.vocabs[0])

        with pytest.raises(ValueError, match="dim_vocab is 64"):
            EmbedTask(config).run()
        assert not Path(config.inference.output).exists()

    def test_half_precision_matches_float32(self, tmp_path):
        """fp16 replicas produce float32 vectors close to an fp32 run."""
        from seqembed.graph import Graph
        from seqembed.inference import Embedder, extract_vectors
        from seqembed.data import BatchGenerator, ParallelCorpus, Vocab
        from seqembed.model import ModelWeights

        config = smoke_config(tmp_path)
        config = replace(config, model=replace(config.model, normalize=True))
        config = prepare_model(config, tmp_path)
        weights = ModelWeights(config.inference.model_path)
        vocab = Vocab.load(config.inference.vocabs[0])
        batch = next(iter(BatchGenerator(
            ParallelCorpus(config.inference.inputs, [vocab]), mini_batch=len(SENTENCES)
        )))

        results = {}
        for dtype in (torch.float32, torch.float16):
            graph = Graph("cpu", dtype=dtype)
            embedder = Embedder(config, graph)
            embedder.load(weights)
            output = embedder.build(batch)
            graph.forward()
            assert output.dtype == dtype
            results[dtype] = extract_vectors(output)

        assert results[torch.float16].dtype == np.float32
        assert np.allclose(results[torch.float16], results[torch.float32], atol=1e-3)
