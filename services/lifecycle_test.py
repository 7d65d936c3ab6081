import unittest
from datetime import datetime, timedelta, timezone
from models.events import EventRecord
from models.experiments import ExperimentRecord, ExperimentSettings, ExperimentStatus, VariantDescriptor
from models.results import ExperimentOutcome, VariantStats
from models.sweep import TransitionKind
from services.errors import MalformedExperimentError
from services.lifecycle import (
    LOW_PERFORMANCE_REASON,
    LifecycleThresholds,
    can_transition,
    decide,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


def make_experiment(status=ExperimentStatus.ACTIVE, experiment_id=1, **kwargs):
    kwargs.setdefault("variants", [VariantDescriptor(id=1, name="X"), VariantDescriptor(id=2, name="Y")])
    return ExperimentRecord(id=experiment_id, name=f"exp-{experiment_id}", status=status, **kwargs)


def make_events(variant_id, impressions, conversions, experiment_id=1):
    events = [EventRecord(experiment_id=experiment_id, variant_id=variant_id, event_type="impression", timestamp=NOW)] * impressions
    events += [EventRecord(experiment_id=experiment_id, variant_id=variant_id, event_type="conversion", timestamp=NOW)] * conversions
    return events


# 120/30 vs 120/12: significant at ~99.8%
WINNING_EVENTS = make_events(1, 120, 30) + make_events(2, 120, 12)
# 300/2 vs 300/1: 600 impressions, mean rate 0.5%
LOW_PERFORMANCE_EVENTS = make_events(1, 300, 2) + make_events(2, 300, 1)


class TestTransitionsTable(unittest.TestCase):

    def test_allowed(self):
        self.assertTrue(can_transition(ExperimentStatus.DRAFT, ExperimentStatus.ACTIVE))
        self.assertTrue(can_transition(ExperimentStatus.ACTIVE, ExperimentStatus.PAUSED))
        self.assertTrue(can_transition(ExperimentStatus.PAUSED, ExperimentStatus.COMPLETED))

    def test_completed_is_terminal(self):
        for target in ExperimentStatus:
            self.assertFalse(can_transition(ExperimentStatus.COMPLETED, target))

    def test_draft_cannot_complete_directly(self):
        self.assertFalse(can_transition(ExperimentStatus.DRAFT, ExperimentStatus.COMPLETED))


class TestDecide(unittest.TestCase):

    def test_draft_with_past_start_date_starts(self):
        decision = decide(make_experiment(ExperimentStatus.DRAFT, start_date=NOW - HOUR), [], NOW)
        self.assertEqual(decision.kind, TransitionKind.STARTED)
        self.assertEqual(decision.fields, {"status": ExperimentStatus.ACTIVE})

    def test_draft_starts_exactly_at_start_date(self):
        decision = decide(make_experiment(ExperimentStatus.DRAFT, start_date=NOW), [], NOW)
        self.assertEqual(decision.kind, TransitionKind.STARTED)

    def test_draft_without_due_start_date_stays(self):
        self.assertIsNone(decide(make_experiment(ExperimentStatus.DRAFT), [], NOW))
        self.assertIsNone(decide(make_experiment(ExperimentStatus.DRAFT, start_date=NOW + HOUR), [], NOW))

    def test_draft_is_not_evaluated_for_a_winner(self):
        experiment = make_experiment(ExperimentStatus.DRAFT)
        self.assertIsNone(decide(experiment, WINNING_EVENTS, NOW))

    def test_naive_dates_are_treated_as_utc(self):
        experiment = make_experiment(ExperimentStatus.DRAFT, start_date=datetime(2026, 3, 1, 11, 0))
        self.assertEqual(decide(experiment, [], NOW).kind, TransitionKind.STARTED)

    def test_end_date_completes_active_and_paused_without_results(self):
        for status in (ExperimentStatus.ACTIVE, ExperimentStatus.PAUSED):
            decision = decide(make_experiment(status, end_date=NOW - HOUR), [], NOW)
            self.assertEqual(decision.kind, TransitionKind.EXPIRED)
            self.assertEqual(decision.to_status, ExperimentStatus.COMPLETED)
            self.assertNotIn("results", decision.fields)
            self.assertEqual(decision.fields["completion_reason"], "end_date_reached")

    def test_end_date_is_checked_before_significance(self):
        experiment = make_experiment(end_date=NOW - HOUR)
        decision = decide(experiment, WINNING_EVENTS, NOW)
        self.assertEqual(decision.kind, TransitionKind.EXPIRED)

    def test_significant_winner_completes_with_results(self):
        decision = decide(make_experiment(), WINNING_EVENTS, NOW)

        self.assertEqual(decision.kind, TransitionKind.WINNER_DECLARED)
        self.assertEqual(decision.to_status, ExperimentStatus.COMPLETED)
        outcome = decision.outcome
        self.assertEqual(outcome.winner, 1)
        self.assertEqual(outcome.winner_name, "X")
        self.assertEqual(outcome.runner_up, 2)
        self.assertEqual(outcome.total_participants, 240)
        self.assertGreaterEqual(outcome.confidence_level, 95)
        self.assertEqual(outcome.variant_stats[1].conversions, 30)

    def test_same_inputs_give_the_same_results(self):
        first = decide(make_experiment(), WINNING_EVENTS, NOW).outcome
        second = decide(make_experiment(), WINNING_EVENTS, NOW + HOUR).outcome
        self.assertEqual(first, second)

    def test_events_of_other_experiments_are_ignored(self):
        foreign = make_events(1, 120, 30, experiment_id=2) + make_events(2, 120, 12, experiment_id=2)
        self.assertIsNone(decide(make_experiment(), foreign, NOW))

    def test_minimum_sample_gate(self):
        """50/5 vs 50/4: below 100 impressions per variant, no winner."""
        events = make_events(1, 50, 5) + make_events(2, 50, 4)
        self.assertIsNone(decide(make_experiment(), events, NOW))

    def test_confidence_just_under_threshold_declares_nothing(self):
        # Reported as 95.0 after rounding, but the raw confidence is below 95
        events = make_events(1, 100, 31) + make_events(2, 100, 19)
        self.assertIsNone(decide(make_experiment(), events, NOW))

    def test_gate_applies_to_every_variant(self):
        events = make_events(1, 500, 150) + make_events(2, 99, 5)
        self.assertIsNone(decide(make_experiment(), events, NOW))

    def test_injected_thresholds(self):
        thresholds = LifecycleThresholds(min_impressions_per_variant=200)
        self.assertIsNone(decide(make_experiment(), WINNING_EVENTS, NOW, thresholds))

    def test_per_experiment_overrides(self):
        stricter = make_experiment(metadata=ExperimentSettings(min_sample_size=150))
        self.assertIsNone(decide(stricter, WINNING_EVENTS, NOW))

        looser = make_experiment(metadata=ExperimentSettings(min_sample_size=50))
        events = make_events(1, 60, 30) + make_events(2, 60, 5)
        self.assertEqual(decide(looser, events, NOW).kind, TransitionKind.WINNER_DECLARED)

    def test_auto_declare_winner_can_be_disabled(self):
        experiment = make_experiment(metadata=ExperimentSettings(auto_declare_winner=False))
        self.assertIsNone(decide(experiment, WINNING_EVENTS, NOW))

    def test_low_performance_pauses(self):
        experiment = make_experiment(metadata=ExperimentSettings(auto_pause_low_performance=True))
        decision = decide(experiment, LOW_PERFORMANCE_EVENTS, NOW)

        self.assertEqual(decision.kind, TransitionKind.PAUSED_LOW_PERFORMANCE)
        self.assertEqual(decision.fields["paused_reason"], LOW_PERFORMANCE_REASON)
        self.assertEqual(decision.fields["paused_at"], NOW)

    def test_low_performance_needs_the_flag(self):
        self.assertIsNone(decide(make_experiment(), LOW_PERFORMANCE_EVENTS, NOW))

    def test_low_performance_needs_enough_traffic(self):
        experiment = make_experiment(metadata=ExperimentSettings(auto_pause_low_performance=True))
        events = make_events(1, 200, 1) + make_events(2, 200, 0)
        self.assertIsNone(decide(experiment, events, NOW))

    def test_paused_experiment_never_resumes(self):
        experiment = make_experiment(ExperimentStatus.PAUSED, paused_reason=LOW_PERFORMANCE_REASON)
        self.assertIsNone(decide(experiment, WINNING_EVENTS, NOW))

    def test_completed_experiment_is_left_alone(self):
        outcome = ExperimentOutcome(
            total_participants=240,
            variant_stats={1: VariantStats(variant_id=1), 2: VariantStats(variant_id=2)},
            winner=2,
            confidence_level=97.0,
        )
        experiment = make_experiment(ExperimentStatus.COMPLETED, results=outcome, end_date=NOW - HOUR)
        self.assertIsNone(decide(experiment, WINNING_EVENTS, NOW))

    def test_experiment_without_variants_is_malformed(self):
        with self.assertRaises(MalformedExperimentError):
            decide(make_experiment(variants=[]), [], NOW)
