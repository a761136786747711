"""
Tests for the episode scheduler and training state.
"""

import pytest

from config.schemas import TrainingConfig
from training.scheduler import EpisodePhase, Scheduler
from training.training_state import TrainingObserver, TrainingState
from utils.exceptions import TrainingError


class RecordingObserver(TrainingObserver):
    def __init__(self, name, events):
        self.name = name
        self.events = events

    def on_start(self, state):
        self.events.append((self.name, "start"))

    def on_step(self, state, cost, batch):
        self.events.append((self.name, "step", cost))

    def on_epoch_end(self, state):
        self.events.append((self.name, "epoch", state.epoch))

    def on_finish(self, state):
        self.events.append((self.name, "finish"))


def make_scheduler(listeners=(), **training):
    config = TrainingConfig(**training)
    state = TrainingState(config.learn_rate)
    return Scheduler(config, state, listeners), state


class TestScheduler:
    """State machine and stopping rules."""

    def test_lifecycle(self):
        events = []
        scheduler, state = make_scheduler([RecordingObserver("a", events)], after_epochs=2)

        assert scheduler.phase == EpisodePhase.CREATED
        scheduler.started()
        assert scheduler.phase == EpisodePhase.STARTED

        scheduler.update(1.5, batch=None)
        assert scheduler.phase == EpisodePhase.RUNNING
        scheduler.increase_epoch()
        assert scheduler.phase == EpisodePhase.EPOCH_BOUNDARY
        scheduler.finished()

        assert scheduler.phase == EpisodePhase.FINISHED
        assert events == [("a", "start"), ("a", "step", 1.5), ("a", "epoch", 1), ("a", "finish")]

    def test_listeners_notified_in_registration_order(self):
        events = []
        scheduler, _ = make_scheduler([RecordingObserver("first", events)])
        scheduler.register_listener(RecordingObserver("second", events))

        scheduler.started()

        assert events == [("first", "start"), ("second", "start")]

    def test_keep_going_is_side_effect_free(self):
        scheduler, state = make_scheduler(after_epochs=1)
        scheduler.started()

        assert scheduler.keep_going() and scheduler.keep_going()
        assert (state.epoch, state.batches, state.total_steps) == (0, 0, 0)

    def test_stops_after_epochs(self):
        scheduler, state = make_scheduler(after_epochs=2)
        scheduler.started()
        scheduler.increase_epoch()
        assert scheduler.keep_going()
        scheduler.increase_epoch()
        assert not scheduler.keep_going()

    def test_stops_after_batches(self):
        scheduler, state = make_scheduler(after_epochs=0, after_batches=2)
        scheduler.started()
        scheduler.update(1.0, None)
        assert scheduler.keep_going()
        scheduler.update(1.0, None)
        assert not scheduler.keep_going()

    def test_update_is_the_only_step_counter(self):
        scheduler, state = make_scheduler()
        scheduler.started()
        scheduler.update(2.0, None)
        scheduler.update(4.0, None)

        assert state.batches == 2
        assert state.total_steps == 2
        assert state.mean_cost == pytest.approx(3.0)

    def test_finished_is_terminal(self):
        scheduler, _ = make_scheduler()
        scheduler.started()
        scheduler.finished()

        assert not scheduler.keep_going()
        with pytest.raises(TrainingError):
            scheduler.update(1.0, None)
        with pytest.raises(TrainingError):
            scheduler.increase_epoch()

    def test_update_before_start_fails(self):
        scheduler, _ = make_scheduler()
        with pytest.raises(TrainingError):
            scheduler.update(1.0, None)

    def test_start_twice_fails(self):
        scheduler, _ = make_scheduler()
        scheduler.started()
        with pytest.raises(TrainingError):
            scheduler.started()

    def test_episode_without_batches_finishes(self):
        scheduler, state = make_scheduler(after_epochs=1)
        scheduler.started()
        scheduler.increase_epoch()
        scheduler.finished()

        assert state.batches == 0
        assert state.total_steps == 0


class TestTrainingState:
    """Shared state across episodes."""

    def test_new_episode_resets_per_episode_fields(self):
        first, state = make_scheduler(learn_rate=0.5, lr_decay=0.5)
        first.started()
        first.update(1.0, None)
        first.increase_epoch()
        first.finished()
        assert state.learning_rate == pytest.approx(0.25)

        second = Scheduler(first.config, state)
        second.started()

        assert state.learning_rate == pytest.approx(0.5)
        assert (state.epoch, state.batches) == (0, 0)
        assert state.total_steps == 1
        assert state.episodes == 2

    def test_batch_decay_strategy(self):
        scheduler, state = make_scheduler(learn_rate=1.0, lr_decay=0.5, lr_decay_strategy="batches",
                                          lr_decay_start=2)
        scheduler.started()
        scheduler.update(1.0, None)
        assert state.learning_rate == pytest.approx(1.0)
        scheduler.update(1.0, None)
        assert state.learning_rate == pytest.approx(0.5)

    def test_stopping_criterion_required(self):
        with pytest.raises(ValueError):
            TrainingConfig(after_epochs=0, after_batches=0)
