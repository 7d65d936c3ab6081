import unittest
from datetime import datetime, timezone
from models.events import EventRecord
from models.experiments import VariantDescriptor
from services.aggregation import aggregate, mean_conversion_rate, total_impressions

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def event(variant_id, event_type, experiment_id=1):
    return EventRecord(experiment_id=experiment_id, variant_id=variant_id, event_type=event_type, timestamp=NOW)


class TestAggregate(unittest.TestCase):

    def setUp(self):
        self.variants = [
            VariantDescriptor(id=10, name="control"),
            VariantDescriptor(id=11, name="challenger", config={"color": "red"}),
        ]

    def test_counts_impressions_and_conversions_per_variant(self):
        events = (
            [event(10, "impression")] * 4 + [event(10, "conversion")]
            + [event(11, "impression")] * 2 + [event(11, "conversion")] * 2
        )
        stats = aggregate(self.variants, events)

        self.assertEqual(stats[10].impressions, 4)
        self.assertEqual(stats[10].conversions, 1)
        self.assertEqual(stats[10].conversion_rate, 0.25)
        self.assertEqual(stats[11].conversion_rate, 1.0)
        self.assertEqual(stats[11].variant_name, "challenger")

    def test_variant_without_events_has_zero_rate(self):
        stats = aggregate(self.variants, [event(10, "impression")])
        self.assertEqual(stats[11].impressions, 0)
        self.assertEqual(stats[11].conversion_rate, 0.0)

    def test_conversions_without_impressions_do_not_divide_by_zero(self):
        stats = aggregate(self.variants, [event(10, "conversion")])
        self.assertEqual(stats[10].conversions, 1)
        self.assertEqual(stats[10].conversion_rate, 0.0)

    def test_unknown_types_and_variants_are_ignored(self):
        events = [event(10, "impression"), event(10, "click"), event(99, "impression"), event(11, "Conversion")]
        stats = aggregate(self.variants, events)
        self.assertEqual(stats[10].impressions, 1)
        self.assertEqual(stats[11].conversions, 0)
        self.assertEqual(set(stats), {10, 11})

    def test_filters_other_experiments_when_asked(self):
        events = [event(10, "impression", experiment_id=1), event(10, "impression", experiment_id=2)]
        self.assertEqual(aggregate(self.variants, events, experiment_id=1)[10].impressions, 1)
        # Without an id the caller is trusted to have filtered
        self.assertEqual(aggregate(self.variants, events)[10].impressions, 2)

    def test_keeps_declared_variant_order(self):
        variants = list(reversed(self.variants))
        self.assertEqual(list(aggregate(variants, [])), [11, 10])

    def test_does_not_mutate_events(self):
        events = [event(10, "impression"), event(11, "conversion")]
        snapshot = [e.model_dump() for e in events]
        aggregate(self.variants, events)
        self.assertEqual([e.model_dump() for e in events], snapshot)


class TestTotals(unittest.TestCase):

    def test_total_and_mean(self):
        variants = [VariantDescriptor(id=1, name="a"), VariantDescriptor(id=2, name="b")]
        events = [event(1, "impression")] * 300 + [event(1, "conversion")] * 2 \
            + [event(2, "impression")] * 300 + [event(2, "conversion")]
        stats = aggregate(variants, events)

        self.assertEqual(total_impressions(stats), 600)
        self.assertAlmostEqual(mean_conversion_rate(stats), 0.005)

    def test_mean_of_nothing_is_zero(self):
        self.assertEqual(mean_conversion_rate({}), 0.0)
