# training/adaptation_trainer.py
"""
Online adaptation trainer.

For every batch of the evaluation input the trainer pulls one new parallel
sample, runs a short training episode on it with the adapted graph and then
translates the batch with the adapted graph. Once the training stream runs
dry every remaining batch is translated with the untouched baseline.
"""
import logging
import sys
from typing import Iterator, List, Optional

import torch
from tqdm import tqdm

from config.schemas import RootConfig, check_consistency
from data.data_utils import open_output
from data.dataset_classes import BatchGenerator, Corpus, CorpusBatch, TextInput
from data.sample_reader import ParallelSample, TrainSetReader
from models.graph import ComputationGraph
from models.seq2seq import Seq2SeqModel
from training.graph_manager import DualGraphManager
from training.optimizers import create_optimizer
from training.scheduler import Scheduler
from training.training_state import TrainingState, is_finite
from translation.output import OutputCollector, TranslationResult
from translation.translator import Translator
from utils.exceptions import NumericDivergenceError
from utils.gpu_utils import resolve_device
from vocabulary.vocab import load_vocabs

logger = logging.getLogger(__name__)


class AdaptationTrainer:
    """Interleaves per-sample adaptation with translation of the input stream"""

    def __init__(self, config: RootConfig, collector: Optional[OutputCollector] = None,
                 show_progress: Optional[bool] = None):
        # Configuration problems must surface before any iteration runs
        check_consistency(config)
        self.config = config
        self.collector = collector
        self.show_progress = show_progress

        training = config.training
        self.device = resolve_device(config.hardware.device)
        if training.seed is not None:
            torch.manual_seed(training.seed)

        self.vocabs = load_vocabs(config.data.vocabs, config.model.dim_vocabs)
        self.model_config = config.model.with_vocab_dims([len(v) for v in self.vocabs])

        # Training builder and a separate inference builder without dropout
        self.builder = Seq2SeqModel(self.model_config, training)
        self.builder_trans = Seq2SeqModel(self.model_config, training, inference=True)

        baseline = ComputationGraph("baseline", self.device)
        baseline.reserve_workspace_mb(config.hardware.workspace)
        self.builder.load(baseline, config.data.model)
        self.graphs = DualGraphManager(baseline)
        with baseline.execution():
            self.builder.check_params(baseline)

        self.optimizer = create_optimizer(training)
        self.state = TrainingState(training.learn_rate)
        self.translator = Translator(config.translation, self.builder_trans, self.vocabs[-1])
        self.baseline_only = False

        logger.info(f"Adaptation trainer ready on {self.device}: {len(self.vocabs) - 1} source stream(s), "
                    f"{baseline.num_parameters():,} parameter values")

    def iterate(self) -> Iterator[TranslationResult]:
        """Yield translations in input order, adapting before each batch when a sample is available."""
        data = self.config.data
        testset = Corpus(data.input, self.vocabs[:-1], max_length=self.config.training.max_length,
                         max_length_crop=True)
        test_batches = BatchGenerator(testset, self.config.translation.mini_batch)
        test_batches.prepare(shuffle=False)

        with TrainSetReader(data.train_sets) as reader:
            for batch in tqdm(test_batches, desc="Adapting", unit="batch", disable=self._progress_disabled()):
                sample = reader.get_samples(1)
                if sample:
                    self.train(sample)
                elif not self.baseline_only:
                    self.baseline_only = True
                    logger.info(f"Training samples exhausted after {self.state.episodes} episode(s); "
                                f"translating the remaining input with the baseline")

                # An episode without batches leaves adapted unbuilt, and then equal to the baseline
                use_baseline = self.baseline_only or not self.graphs.adapted_constructed
                yield from self.translate(batch, use_baseline)

    def _progress_disabled(self) -> Optional[bool]:
        # None lets tqdm decide (disabled when stderr is not a terminal)
        return None if self.show_progress is None else not self.show_progress

    def run(self) -> int:
        """Run the loop to the end of the input; returns the number of translations written."""
        collector = self.collector
        stream = None
        if collector is None:
            stream = open_output(self.config.data.output)
            collector = OutputCollector(stream, self.config.translation.n_best)

        count = 0
        try:
            for result in self.iterate():
                collector.write(result)
                count += 1
        finally:
            collector.finish()
            if stream is not None and stream is not sys.stdout:
                stream.close()

        logger.info(f"✅ Translated {count} line(s); {self.state.total_steps} training step(s) "
                    f"over {self.state.episodes} episode(s)")
        return count

    def train(self, sample: ParallelSample) -> int:
        """
        Run one training episode on a single parallel sample.

        Args:
            sample: One string per stream (source(s) first, target last)

        Returns:
            Number of optimizer steps taken in this episode
        """
        training = self.config.training
        scheduler = Scheduler(training, self.state, [self.optimizer])
        dataset = TextInput(sample, self.vocabs, training.max_length, training.max_length_crop)
        batches = BatchGenerator(dataset, training.mini_batch)

        scheduler.started()
        while scheduler.keep_going():
            batches.prepare(shuffle=False)
            seen = 0
            for batch in batches:
                if not scheduler.keep_going():
                    break
                cost = self._train_step(batch)
                scheduler.update(cost, batch)
                seen += 1

            if seen == 0:
                logger.debug("Sample yielded no training batch; ending episode")
                break
            if scheduler.keep_going():
                scheduler.increase_epoch()
        scheduler.finished()
        return self.state.batches

    def _train_step(self, batch: CorpusBatch) -> float:
        adapted = self.graphs.ensure_adapted()
        batch = batch.to(adapted.device)
        with adapted.execution():
            cost = self.builder.build(adapted, batch)
            value = cost.item()
            if not is_finite(value):
                raise NumericDivergenceError(value, self.state.total_steps + 1)
            adapted.backward(cost)
            self.optimizer.update(adapted)
        return value

    def translate(self, batch: CorpusBatch, use_baseline: bool = False) -> List[TranslationResult]:
        """Translate ``batch`` with the baseline or the adapted graph in inference mode."""
        graph = self.graphs.select(use_baseline)
        logger.debug(f"Translating lines {batch.sentence_ids} with graph '{graph.name}'")
        batch = batch.to(graph.device)
        with self.graphs.inference(graph), graph.execution(), torch.no_grad():
            return self.translator.translate(graph, batch)
