"""
End-to-end tests of the online adaptation loop.
"""

import pytest
import torch

from data.dataset_classes import SentenceTuple, collate_sentences
from models.graph import ComputationGraph
from models.seq2seq import Seq2SeqModel
from training.adaptation_trainer import AdaptationTrainer
from utils.exceptions import ConfigurationError, NumericDivergenceError, DataError
from tests.conftest import SRC_WORDS, write_lines

TRAIN = [
    ("ich bin", "i am"),
    ("das ist gut", "this is good"),
    ("ein haus", "a house"),
]
INPUTS = ["ich bin klein", "das haus", "gut"]


def snapshot(graph):
    return {name: p.detach().clone() for name, p in graph.params.items()}


def differs(graph, reference):
    return any(not torch.equal(graph.params[name], value) for name, value in reference.items())


class TestScenarios:
    """Sample availability decides which graph translates each batch."""

    def test_every_batch_adapted_while_samples_last(self, make_config, baseline_model, streams):
        streams(train=TRAIN, inputs=INPUTS)
        trainer = AdaptationTrainer(make_config(), show_progress=False)
        baseline_before = snapshot(trainer.graphs.baseline)

        results = trainer.iterate()
        first = next(results)

        assert first.graph == "adapted"
        assert trainer.graphs.adapted_constructed
        assert differs(trainer.graphs.adapted, baseline_before)

        rest = list(results)
        assert [r.graph for r in [first] + rest] == ["adapted", "adapted", "adapted"]
        assert [r.line_num for r in [first] + rest] == [0, 1, 2]
        assert trainer.state.total_steps == 3
        assert trainer.state.episodes == 3
        assert not differs(trainer.graphs.baseline, baseline_before)

    def test_empty_training_stream_never_builds_adapted(self, make_config, baseline_model, streams):
        streams(train=[], inputs=INPUTS[:2])
        trainer = AdaptationTrainer(make_config(), show_progress=False)

        results = list(trainer.iterate())

        assert [r.graph for r in results] == ["baseline", "baseline"]
        assert not trainer.graphs.adapted_constructed
        assert trainer.state.total_steps == 0

    def test_exhausted_stream_falls_back_to_baseline(self, make_config, baseline_model, streams):
        streams(train=TRAIN[:1], inputs=INPUTS)
        trainer = AdaptationTrainer(make_config(), show_progress=False)

        results = list(trainer.iterate())

        assert [r.graph for r in results] == ["adapted", "baseline", "baseline"]
        assert trainer.state.total_steps == 1
        assert trainer.baseline_only

    def test_post_exhaustion_output_matches_baseline_alone(self, make_config, baseline_model, streams):
        streams(train=TRAIN[:1], inputs=INPUTS)
        adapted_run = list(AdaptationTrainer(make_config(), show_progress=False).iterate())

        streams(train=[], inputs=INPUTS)
        baseline_run = list(AdaptationTrainer(make_config(), show_progress=False).iterate())

        for adapted, baseline in zip(adapted_run[1:], baseline_run[1:]):
            assert adapted.best1 == baseline.best1
            assert adapted.bestn == baseline.bestn
            assert adapted.score == baseline.score

    def test_adapted_graph_created_once(self, make_config, baseline_model, streams):
        streams(train=TRAIN, inputs=INPUTS)
        trainer = AdaptationTrainer(make_config(), show_progress=False)

        results = trainer.iterate()
        next(results)
        adapted = trainer.graphs.adapted
        list(results)

        assert trainer.graphs.adapted is adapted
        assert adapted.workspace is trainer.graphs.baseline.workspace


class TestEpisodes:
    """Training episodes on single samples."""

    def test_episode_is_deterministic(self, make_config, baseline_model, streams):
        streams(train=[], inputs=[])
        first = AdaptationTrainer(make_config(), show_progress=False)
        second = AdaptationTrainer(make_config(), show_progress=False)

        first.train(TRAIN[1])
        second.train(TRAIN[1])

        for name, value in first.graphs.adapted.params.items():
            assert torch.equal(value, second.graphs.adapted.params[name])

    def test_after_batches_bounds_steps(self, make_config, baseline_model, streams):
        streams(train=[], inputs=[])
        config = make_config(training={"after_epochs": 0, "after_batches": 3})
        trainer = AdaptationTrainer(config, show_progress=False)

        steps = trainer.train(TRAIN[0])

        assert steps == 3
        assert trainer.state.epoch == 2

    def test_filtered_sample_skips_training(self, make_config, baseline_model, streams):
        streams(train=[], inputs=[])
        config = make_config(training={"max_length": 2})
        trainer = AdaptationTrainer(config, show_progress=False)

        steps = trainer.train(("das ist gut", "this is good"))

        assert steps == 0
        assert not trainer.graphs.adapted_constructed

    def test_non_finite_cost_aborts(self, make_config, baseline_model, streams, monkeypatch):
        streams(train=[], inputs=[])
        trainer = AdaptationTrainer(make_config(), show_progress=False)
        monkeypatch.setattr(trainer.builder, "build",
                            lambda graph, batch: torch.tensor(float("nan"), requires_grad=True))

        with pytest.raises(NumericDivergenceError):
            trainer.train(TRAIN[0])

    def test_learning_rate_reset_each_episode(self, make_config, baseline_model, streams):
        streams(train=[], inputs=[])
        config = make_config(training={"lr_decay": 0.5, "lr_decay_start": 1})
        trainer = AdaptationTrainer(config, show_progress=False)

        trainer.train(TRAIN[0])
        trainer.train(TRAIN[1])

        # One epoch per episode, the decay applies at the epoch boundary of each
        assert trainer.state.learning_rate == pytest.approx(0.05)
        assert trainer.optimizer.learning_rate == pytest.approx(0.05)


class TestRun:
    """Output writing and construction-time checks."""

    def test_run_writes_output_in_order(self, tmp_path, make_config, baseline_model, streams):
        streams(train=TRAIN[:2], inputs=INPUTS)
        trainer = AdaptationTrainer(make_config(), show_progress=False)

        count = trainer.run()

        lines = (tmp_path / "output.txt").read_text(encoding="utf-8").split("\n")
        assert count == 3
        assert len(lines) == 4 and lines[-1] == ""

    def test_stream_count_mismatch_is_rejected(self, tmp_path, make_config, baseline_model, streams):
        streams(train=TRAIN, inputs=INPUTS)
        config = make_config(data={"train_sets": [str(tmp_path / "train.src")]})

        with pytest.raises(ConfigurationError):
            AdaptationTrainer(config)

    def test_model_dimension_mismatch_is_rejected(self, make_config, baseline_model, streams):
        streams(train=TRAIN, inputs=INPUTS)
        config = make_config(model={"dim_vocabs": [20, 10]})

        with pytest.raises(ConfigurationError):
            AdaptationTrainer(config)

    def test_missing_training_file(self, tmp_path, make_config, baseline_model, streams):
        streams(train=TRAIN, inputs=INPUTS)
        config = make_config(data={"train_sets": [str(tmp_path / "nope.src"), str(tmp_path / "train.trg")]})
        trainer = AdaptationTrainer(config, show_progress=False)

        with pytest.raises(DataError):
            list(trainer.iterate())


def save_baseline(config):
    """Write a random baseline matching ``config`` to its model path."""
    dims = [len(SRC_WORDS) + 2] * len(config.data.vocabs)
    model_config = config.model.with_vocab_dims(dims)
    torch.manual_seed(0)
    graph = ComputationGraph("baseline")
    builder = Seq2SeqModel(model_config)
    builder.initialize(graph)
    builder.save(graph, config.data.model)


class TestArchitectures:
    """Deep, regularized and multi-source models through the whole loop."""

    def test_deep_lstm_with_dropout(self, make_config, streams):
        config = make_config(
            model={
                "enc_cell": "lstm",
                "dec_cell": "lstm",
                "enc_depth": 3,
                "enc_cell_depth": 2,
                "dec_depth": 2,
                "dec_cell_base_depth": 3,
                "dec_cell_high_depth": 2,
                "layer_normalization": True,
                "skip": True,
                "dropout_rnn": 0.3,
                "dropout_src": 0.1,
                "dropout_trg": 0.1,
            },
            translation={"n_best": True, "mini_batch": 2},
        )
        save_baseline(config)
        streams(train=TRAIN, inputs=INPUTS + ["ein haus ist klein"])
        trainer = AdaptationTrainer(config, show_progress=False)

        results = list(trainer.iterate())

        assert [(r.line_num, r.graph) for r in results] == [
            (0, "adapted"), (1, "adapted"), (2, "adapted"), (3, "adapted")]
        names = trainer.graphs.adapted.param_names()
        for name in ["encoder_bi_cell2_U", "encoder_l3_W", "encoder_bi_gamma1",
                     "decoder_cell3_U", "decoder_l2_cell2_W"]:
            assert name in names
        assert "decoder_cell3_W" not in names

        # Dropout is active for training builds and disabled for translation
        batch = collate_sentences([SentenceTuple(0, [[2, 3, 7, 0]]), SentenceTuple(1, [[4, 5, 0]])])
        first = trainer.translate(batch)
        second = trainer.translate(batch)
        assert [(r.best1, r.bestn, r.score) for r in first] == [(r.best1, r.bestn, r.score) for r in second]

        adapted = trainer.graphs.adapted
        train_batch = collate_sentences([SentenceTuple(0, [[2, 3, 0], [2, 3, 0]])])
        with adapted.execution(), torch.no_grad():
            costs = [trainer.builder.build(adapted, train_batch) for _ in range(2)]
        assert not torch.equal(costs[0], costs[1])

    def test_two_source_streams(self, tmp_path, make_config, streams):
        src = str(tmp_path / "vocab.src.yml")
        config = make_config(data={
            "vocabs": [src, src, str(tmp_path / "vocab.trg.yml")],
            "train_sets": [str(tmp_path / "train.src"), str(tmp_path / "train.src2"),
                           str(tmp_path / "train.trg")],
            "input": [str(tmp_path / "input.src"), str(tmp_path / "input.src2")],
        })
        save_baseline(config)
        streams(train=TRAIN[:1], inputs=INPUTS[:2])
        write_lines(tmp_path / "train.src2", ["bin ich"])
        write_lines(tmp_path / "input.src2", ["klein ich", "haus das"])
        trainer = AdaptationTrainer(config, show_progress=False)

        results = list(trainer.iterate())

        assert [r.graph for r in results] == ["adapted", "baseline"]
        assert len(trainer.builder.encoders) == 2
        names = trainer.graphs.baseline.param_names()
        assert "encoder2_Wemb" in names and "encoder2_bi_U" in names
