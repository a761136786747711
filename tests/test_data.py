"""
Tests for vocabularies, datasets and batching.
"""

import json

import pytest
import torch

from data.dataset_classes import BatchGenerator, Corpus, TextInput, collate_sentences, SentenceTuple
from utils.exceptions import VocabularyError
from vocabulary.vocab import EOS_ID, UNK_ID, Vocab, load_vocabs
from tests.conftest import SRC_WORDS, TRG_WORDS, write_lines


class TestVocab:
    """Tests for Vocab loading and coding."""

    def test_yaml_vocab(self, vocab_files):
        vocab = Vocab.load(vocab_files[0])
        assert len(vocab) == len(SRC_WORDS) + 2
        assert vocab.encode("ich bin") == [2, 3, EOS_ID]

    def test_plain_text_vocab_reserves_specials(self, tmp_path):
        path = write_lines(tmp_path / "vocab.txt", ["hello", "world"])
        vocab = Vocab.load(path)
        assert vocab.encode("hello world") == [2, 3, EOS_ID]
        assert vocab.decode([3, 2, EOS_ID, 2]) == "world hello"

    def test_plain_text_vocab_specials_in_any_order(self, tmp_path):
        path = write_lines(tmp_path / "vocab.txt", ["<unk>", "hello", "</s>", "world"])
        vocab = Vocab.load(path)
        assert vocab.token_to_id["</s>"] == EOS_ID
        assert vocab.token_to_id["<unk>"] == UNK_ID
        assert vocab.encode("hello world") == [2, 3, EOS_ID]
        assert len(vocab) == 4

    def test_json_vocab(self, tmp_path):
        path = tmp_path / "vocab.json"
        path.write_text(json.dumps({"</s>": 0, "<unk>": 1, "x": 2}), encoding="utf-8")
        assert Vocab.load(path).encode("x y") == [2, UNK_ID, EOS_ID]

    def test_unknown_words(self, vocab_files):
        vocab = Vocab.load(vocab_files[1])
        assert vocab.encode("i am martian", add_eos=False) == [2, 3, UNK_ID]
        assert vocab.decode([UNK_ID]) == "<unk>"

    def test_max_size_caps_ids(self, vocab_files):
        vocab = Vocab.load(vocab_files[0], max_size=4)
        assert len(vocab) == 4
        assert vocab.encode("ich haus", add_eos=False) == [2, UNK_ID]

    def test_bad_special_id(self, tmp_path):
        path = tmp_path / "vocab.json"
        path.write_text(json.dumps({"</s>": 5, "x": 2}), encoding="utf-8")
        with pytest.raises(VocabularyError):
            Vocab.load(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(VocabularyError):
            Vocab.load(tmp_path / "nope.yml")

    def test_load_vocabs_with_dims(self, vocab_files):
        src, trg = load_vocabs(vocab_files, [5, 0])
        assert len(src) == 5
        assert len(trg) == len(TRG_WORDS) + 2


class TestBatching:
    """Tests for datasets and batch generation."""

    def test_text_input_splits_lines(self, vocab_files):
        vocabs = load_vocabs(vocab_files)
        dataset = TextInput(("ich bin\nein haus", "i am\na house"), vocabs)
        items = list(dataset)
        assert [item.id for item in items] == [0, 1]
        assert items[1].streams == [[4, 5, EOS_ID], [4, 5, EOS_ID]]

    def test_text_input_skips_long_sentences(self, vocab_files):
        vocabs = load_vocabs(vocab_files)
        dataset = TextInput(("ich bin ein haus", "i am a house"), vocabs, max_length=3)
        assert list(dataset) == []

    def test_text_input_crops_long_sentences(self, vocab_files):
        vocabs = load_vocabs(vocab_files)
        dataset = TextInput(("ich bin ein haus", "i am"), vocabs, max_length=3, max_length_crop=True)
        (item,) = list(dataset)
        assert item.streams[0] == [2, 3, EOS_ID]

    def test_collate_pads_and_masks(self):
        batch = collate_sentences([SentenceTuple(0, [[5, 6, EOS_ID]]), SentenceTuple(1, [[7, EOS_ID]])])
        sub = batch.front()
        assert sub.ids.tolist() == [[5, 6, EOS_ID], [7, EOS_ID, EOS_ID]]
        assert sub.mask.tolist() == [[1.0, 1.0, 1.0], [1.0, 1.0, 0.0]]
        assert sub.words == 5

    def test_select_trims_padding(self):
        batch = collate_sentences([SentenceTuple(3, [[5, 6, EOS_ID]]), SentenceTuple(4, [[7, EOS_ID]])])
        selected = batch.select([1])
        assert selected.sentence_ids == [4]
        assert selected.front().ids.tolist() == [[7, EOS_ID]]

    def test_batch_generator_groups_items(self, vocab_files):
        vocabs = load_vocabs(vocab_files)
        dataset = TextInput(("ich\nbin\nein", "i\nam\na"), vocabs)
        generator = BatchGenerator(dataset, mini_batch=2)
        generator.prepare()
        assert [b.size for b in generator] == [2, 1]

        # prepare() rewinds for the next epoch
        generator.prepare()
        assert len(list(generator)) == 2

    def test_corpus_keeps_line_numbers(self, tmp_path, vocab_files):
        path = write_lines(tmp_path / "input.src", ["ich", "bin", "gut"])
        corpus = Corpus([path], load_vocabs(vocab_files)[:1])
        batches = list(BatchGenerator(corpus, mini_batch=1))
        assert [b.sentence_ids for b in batches] == [[0], [1], [2]]
        assert isinstance(batches[0].front().ids, torch.Tensor)

    def test_corpus_stops_at_shortest_stream(self, tmp_path, vocab_files):
        first = write_lines(tmp_path / "a.src", ["ich", "bin", "gut"])
        second = write_lines(tmp_path / "b.src", ["ich"])
        vocab = load_vocabs(vocab_files)[0]
        assert len(list(Corpus([first, second], [vocab, vocab]))) == 1

    def test_corpus_crops_by_default(self, tmp_path, vocab_files):
        path = write_lines(tmp_path / "input.src", ["ich bin ein haus"])
        (item,) = list(Corpus([path], load_vocabs(vocab_files)[:1], max_length=2))
        assert item.streams[0] == [2, EOS_ID]
