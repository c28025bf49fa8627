"""
Unit tests for labtime values and event time normalization.
"""

import unittest
from datetime import datetime
from zoneinfo import ZoneInfo

from clinical_etl.exceptions import ConfigurationError, InputError
from clinical_etl.mapping.time_fields import (
    Labtime, TimeNormalizer, resolve_labtime_function, resolve_timezone
)


class TestLabtime(unittest.TestCase):
    """Test Labtime construction and conversion."""

    def test_from_decimal(self):
        labtime = Labtime.from_decimal(1.5, 2020)
        self.assertEqual(labtime, Labtime(year=2020, hour=1, minute=30, second=0.0))

    def test_from_decimal_beyond_one_day(self):
        labtime = Labtime.from_decimal(49.25, 1998)
        self.assertEqual((labtime.hour, labtime.minute), (49, 15))

    def test_from_seconds(self):
        labtime = Labtime.from_seconds(3725.5, 2001)
        self.assertEqual((labtime.hour, labtime.minute, labtime.second), (1, 2, 5.5))

    def test_from_s_string_formats(self):
        self.assertEqual(Labtime.from_s("12:05", 2010), Labtime(2010, 12, 5, 0.0))
        self.assertEqual(Labtime.from_s("130:07:09", 2010), Labtime(2010, 130, 7, 9.0))
        self.assertEqual(Labtime.from_s("1:00:00.250", 2010), Labtime(2010, 1, 0, 0.25))

    def test_from_s_numeric_fallback(self):
        self.assertEqual(Labtime.from_s("2.5", 2010), Labtime(2010, 2, 30, 0.0))
        self.assertEqual(Labtime.from_s(0.25, 2010), Labtime(2010, 0, 15, 0.0))

    def test_from_s_rejects_garbage(self):
        with self.assertRaises(ValueError):
            Labtime.from_s("noon", 2010)

    def test_round_trip_values(self):
        labtime = Labtime(2005, 10, 30, 36.0)
        self.assertAlmostEqual(labtime.total_seconds(), 37836.0)
        self.assertAlmostEqual(labtime.to_decimal(), 10.51)

    def test_component_range_validation(self):
        with self.assertRaises(ValueError):
            Labtime(2000, 1, 60, 0.0)
        with self.assertRaises(ValueError):
            Labtime(2000, 1, 0, 60.0)


class TestLabtimeFunctions(unittest.TestCase):

    def test_default_function(self):
        self.assertEqual(resolve_labtime_function(None), 'from_s')

    def test_known_functions(self):
        for name in ('from_s', 'from_decimal', 'from_seconds'):
            self.assertEqual(resolve_labtime_function(name), name)

    def test_unknown_function(self):
        with self.assertRaises(ConfigurationError):
            resolve_labtime_function('from_moon_phase')

    def test_unknown_timezone(self):
        with self.assertRaises(ConfigurationError):
            resolve_timezone('Mars/Olympus_Mons')


class TestTimeNormalizer(unittest.TestCase):
    """Exactly one of labtime/realtime must remain after normalization."""

    def setUp(self):
        self.normalizer = TimeNormalizer()

    def test_raw_components(self):
        attributes = {'name': 'x', 'labtime_year': '2001', 'labtime_hour': 5.0,
                      'labtime_min': '7', 'labtime_sec': '30.5'}
        result = self.normalizer.normalize(attributes)
        self.assertEqual(result['labtime'], Labtime(2001, 5, 7, 30.5))
        self.assertNotIn('labtime_year', result)
        self.assertNotIn('labtime_hour', result)
        self.assertNotIn('realtime', result)

    def test_decimal(self):
        result = self.normalizer.normalize({'labtime_year': 2020, 'labtime_decimal': '2.5'})
        self.assertEqual(result['labtime'], Labtime(2020, 2, 30, 0.0))
        self.assertNotIn('labtime_decimal', result)

    def test_labtime_string_with_function(self):
        result = self.normalizer.normalize({'labtime_year': 2020, 'labtime': '7200'}, labtime_fn='from_seconds')
        self.assertEqual(result['labtime'], Labtime(2020, 2, 0, 0.0))

    def test_labtime_string_default_function(self):
        result = self.normalizer.normalize({'labtime_year': 2020, 'labtime': '3:15:00'})
        self.assertEqual(result['labtime'], Labtime(2020, 3, 15, 0.0))

    def test_labtime_string_without_year(self):
        with self.assertRaises(InputError):
            self.normalizer.normalize({'labtime': '3:15:00'})

    def test_realtime_with_format(self):
        result = self.normalizer.normalize({'realtime': '03/14/2015 09:26'}, realtime_format='%m/%d/%Y %H:%M')
        self.assertEqual(result['realtime'], datetime(2015, 3, 14, 9, 26, tzinfo=ZoneInfo('America/New_York')))
        self.assertNotIn('labtime', result)

    def test_realtime_native_value_used_as_is(self):
        native = datetime(2015, 3, 14, 9, 26)
        result = self.normalizer.normalize({'realtime': native})
        self.assertIs(result['realtime'], native)

    def test_reference_timezone_is_configurable(self):
        normalizer = TimeNormalizer('UTC')
        result = normalizer.normalize({'realtime': '2015-03-14'}, realtime_format='%Y-%m-%d')
        self.assertEqual(result['realtime'].tzinfo, ZoneInfo('UTC'))

    def test_both_representations_rejected(self):
        with self.assertRaises(InputError) as context:
            self.normalizer.normalize({'labtime_year': 2020, 'labtime_decimal': 1.0,
                                       'realtime': datetime(2020, 1, 1)})
        self.assertIn('both realtime and labtime', str(context.exception))

    def test_neither_representation_rejected(self):
        with self.assertRaises(InputError):
            self.normalizer.normalize({'name': 'x', 'labtime_year': 2020})

    def test_malformed_component(self):
        with self.assertRaises(InputError):
            self.normalizer.normalize({'labtime_year': 2020, 'labtime_decimal': 'soon'})

    def test_malformed_realtime(self):
        with self.assertRaises(InputError):
            self.normalizer.normalize({'realtime': 'yesterday'}, realtime_format='%Y-%m-%d')


if __name__ == '__main__':
    unittest.main()
