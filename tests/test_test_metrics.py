from __future__ import annotations

import io
import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from backoffice.test_metrics import (
    MetricsCollector,
    MetricsStore,
    MetricsTestRunner,
    classify_test,
    load_coverage,
    percentile,
    recommendations,
    trend,
)


def _sample_case() -> type[unittest.TestCase]:
    # Built on demand so discovery does not pick up the failing cases.
    class Sample(unittest.TestCase):
        def test_ok(self) -> None:
            self.assertTrue(True)

        def test_broken(self) -> None:
            self.assertEqual(1, 2)

        def test_raises(self) -> None:
            raise RuntimeError('boom')

        @unittest.skip('not today')
        def test_skipped(self) -> None:
            pass

    return Sample


def _run(pass_rate: float, average: float) -> dict:
    return {'summary': {'pass_rate': pass_rate, 'duration_ms': {'average': average}}}


class PercentileTests(unittest.TestCase):
    def test_nearest_rank(self) -> None:
        values = [float(v) for v in range(1, 101)]
        self.assertEqual(percentile(values, 50), 51.0)
        self.assertEqual(percentile(values, 99), 100.0)
        self.assertEqual(percentile([7.0], 95), 7.0)
        self.assertEqual(percentile([], 50), 0.0)


class CollectorTests(unittest.TestCase):
    def test_summary(self) -> None:
        collector = MetricsCollector()
        collector.record('a', 'passed', 10.0, 100.0)
        collector.record('b', 'passed', 30.0, 300.0)
        collector.record('c', 'failed', 20.0, 200.0)
        collector.record('d', 'skipped', 0.0)

        summary = collector.summary()
        self.assertEqual(summary['total'], 4)
        self.assertEqual(summary['passed'], 2)
        self.assertEqual(summary['pass_rate'], 66.67)
        self.assertEqual(summary['duration_ms']['total'], 60.0)
        self.assertEqual(summary['duration_ms']['max'], 30.0)
        self.assertEqual(summary['memory_kib']['peak'], 300.0)
        self.assertEqual([row['name'] for row in summary['slowest']], ['b', 'c', 'a', 'd'])

    def test_unknown_outcome_rejected(self) -> None:
        with self.assertRaises(ValueError):
            MetricsCollector().record('a', 'flaky', 1.0)

    def test_empty_summary(self) -> None:
        summary = MetricsCollector().summary()
        self.assertEqual(summary['total'], 0)
        self.assertEqual(summary['pass_rate'], 0.0)
        self.assertEqual(summary['duration_ms']['p90'], 0.0)


class RunnerTests(unittest.TestCase):
    def test_runner_records_every_outcome(self) -> None:
        suite = unittest.defaultTestLoader.loadTestsFromTestCase(_sample_case())
        runner = MetricsTestRunner(stream=io.StringIO(), verbosity=0)
        result = runner.run(suite)

        self.assertFalse(result.wasSuccessful())
        outcomes = {sample.name.rsplit('.', 1)[-1]: sample.outcome for sample in runner.collector.samples}
        self.assertEqual(
            outcomes,
            {'test_ok': 'passed', 'test_broken': 'failed', 'test_raises': 'error', 'test_skipped': 'skipped'},
        )
        self.assertTrue(all(sample.duration_ms >= 0 for sample in runner.collector.samples))


class StoreAndTrendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.store = MetricsStore(self.tmp.name)

    def test_save_and_load_in_order(self) -> None:
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for offset in (2, 0, 1):
            summary = MetricsCollector().summary()
            summary['total'] = offset
            self.store.save(summary, now=start + timedelta(minutes=offset))

        runs = self.store.load_runs()
        self.assertEqual([run['summary']['total'] for run in runs], [0, 1, 2])
        self.assertEqual(runs[0]['samples'], [])

    def test_missing_directory_has_no_runs(self) -> None:
        self.assertEqual(MetricsStore(f'{self.tmp.name}/absent').load_runs(), [])

    def test_trend_needs_two_windows(self) -> None:
        self.assertEqual(trend([_run(100, 10)] * 19), {'direction': 'insufficient data', 'runs': 19})

    def test_trend_directions(self) -> None:
        steady = [_run(90, 10)] * 10
        self.assertEqual(trend(steady + [_run(100, 8)] * 10)['direction'], 'improving')
        self.assertEqual(trend(steady + [_run(80, 12)] * 10)['direction'], 'degrading')
        self.assertEqual(trend(steady + [_run(91, 10.2)] * 10)['direction'], 'stable')

        mixed = trend(steady + [_run(100, 12)] * 10)
        self.assertEqual(mixed['direction'], 'stable')
        self.assertEqual(mixed['pass_rate']['delta'], 10.0)
        self.assertEqual(mixed['average_duration_ms']['delta'], 2.0)


class ReportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def test_tests_are_grouped_by_module_type(self) -> None:
        self.assertEqual(classify_test('test_api.ApiTests.test_login'), 'integration')
        self.assertEqual(classify_test('test_checkout_e2e.Flow.test_pay'), 'e2e')
        self.assertEqual(classify_test('test_credit_scoring.CreditScoreTests.test_base'), 'unit')

        collector = MetricsCollector()
        collector.record('test_api.ApiTests.test_login', 'passed', 5.0)
        collector.record('test_sales_service.SalesTests.test_total', 'passed', 1.0)
        self.assertEqual(collector.summary()['by_type'], {'unit': 1, 'integration': 1, 'e2e': 0})

    def test_coverage_report_is_read_per_module(self) -> None:
        path = Path(self.tmp.name) / 'coverage.json'
        path.write_text(
            json.dumps(
                {
                    'files': {
                        'backoffice/services/sales_service.py': {'summary': {'percent_covered': 91.234}},
                        'backoffice/schema_check.py': {'summary': {'percent_covered': 55.0}},
                    }
                }
            ),
            encoding='utf-8',
        )
        self.assertEqual(
            load_coverage(path),
            {'backoffice.services.sales_service': 91.2, 'backoffice.schema_check': 55.0},
        )
        self.assertEqual(load_coverage(Path(self.tmp.name) / 'missing.json'), {})

    def test_recommendations(self) -> None:
        summary = {'failed': 0, 'error': 0, 'by_type': {'unit': 5, 'integration': 5, 'e2e': 0}}
        advice = recommendations(summary, {'backoffice.schema_check': 55.0, 'backoffice.db': 95.0})

        self.assertEqual(advice[0], 'backoffice.schema_check: low test coverage (55.0%), target 80%+')
        self.assertIn('Overall coverage is 75.0%, aim for 80%+', advice)
        self.assertIn('Add more unit tests, target 70% of the suite', advice)
        self.assertFalse(any('integration' in line for line in advice))

        healthy = {'failed': 0, 'error': 0, 'by_type': {'unit': 8, 'integration': 2, 'e2e': 0}}
        self.assertEqual(recommendations(healthy, {'backoffice.db': 90.0}), [])


if __name__ == '__main__':
    unittest.main()
