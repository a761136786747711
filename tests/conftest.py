"""
Shared fixtures: tiny vocabularies, text files and a randomly initialized
baseline model small enough to train and decode on CPU in milliseconds.
"""

import pytest
import torch
import yaml

from config.schemas import RootConfig
from models.graph import ComputationGraph
from models.seq2seq import Seq2SeqModel

SRC_WORDS = ["ich", "bin", "ein", "haus", "das", "ist", "gut", "klein"]
TRG_WORDS = ["i", "am", "a", "house", "this", "is", "good", "small"]


def write_vocab(path, words):
    mapping = {"</s>": 0, "<unk>": 1}
    mapping.update({word: i + 2 for i, word in enumerate(words)})
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(mapping, f, sort_keys=False)
    return path


def write_lines(path, lines):
    with open(path, "w", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")
    return str(path)


def config_dict(tmp_path, **sections):
    data = {
        "model": {
            "dim_emb": 8,
            "dim_rnn": 8,
            "enc_cell": "gru",
            "dec_cell": "gru",
            "dec_cell_base_depth": 2,
        },
        "training": {
            "learn_rate": 0.1,
            "optimizer": "sgd",
            "after_epochs": 1,
            "mini_batch": 4,
            "seed": 1,
        },
        "translation": {
            "beam_size": 3,
            "max_length_factor": 2.0,
        },
        "data": {
            "model": str(tmp_path / "model.pt"),
            "vocabs": [str(tmp_path / "vocab.src.yml"), str(tmp_path / "vocab.trg.yml")],
            "train_sets": [str(tmp_path / "train.src"), str(tmp_path / "train.trg")],
            "input": [str(tmp_path / "input.src")],
            "output": str(tmp_path / "output.txt"),
        },
        "hardware": {"device": "cpu", "workspace": 1},
    }
    for section, values in sections.items():
        data.setdefault(section, {}).update(values)
    return data


@pytest.fixture
def vocab_files(tmp_path):
    src = write_vocab(tmp_path / "vocab.src.yml", SRC_WORDS)
    trg = write_vocab(tmp_path / "vocab.trg.yml", TRG_WORDS)
    return str(src), str(trg)


@pytest.fixture
def make_config(tmp_path, vocab_files):
    """Build a RootConfig for the tmp workspace, section values may be overridden."""
    def _make(**sections):
        return RootConfig(**config_dict(tmp_path, **sections))
    return _make


@pytest.fixture
def model_config(make_config):
    return make_config().model.with_vocab_dims([len(SRC_WORDS) + 2, len(TRG_WORDS) + 2])


@pytest.fixture
def initialized_graph(model_config):
    torch.manual_seed(0)
    graph = ComputationGraph("baseline")
    Seq2SeqModel(model_config).initialize(graph)
    return graph


@pytest.fixture
def baseline_model(tmp_path, model_config, initialized_graph):
    """Path of a saved random baseline model matching the tiny configuration."""
    path = tmp_path / "model.pt"
    Seq2SeqModel(model_config).save(initialized_graph, path)
    return str(path)


@pytest.fixture
def streams(tmp_path):
    """Write training and input files: streams(train=[(src, trg), ...], inputs=[...])."""
    def _write(train=(), inputs=()):
        write_lines(tmp_path / "train.src", [src for src, _ in train])
        write_lines(tmp_path / "train.trg", [trg for _, trg in train])
        write_lines(tmp_path / "input.src", list(inputs))
    return _write
