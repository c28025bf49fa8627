"""
Unit tests for string and validation helpers.
"""

import pytest

from clinical_etl.utils import StringUtils, ValidationUtils


class TestSplitMultiple:

    @pytest.mark.parametrize("value, expected", [
        ('a;b;c', ['a', 'b', 'c']),
        (' a ; b ', ['a', 'b']),
        ('a;b;', ['a', 'b']),
        ('a;;b', ['a', '', 'b']),
        ('single', ['single']),
        ('', []),
        (None, []),
    ])
    def test_split(self, value, expected):
        assert StringUtils.split_multiple(value) == expected

    def test_custom_delimiter(self):
        assert StringUtils.split_multiple('a|b', '|') == ['a', 'b']


class TestSplitFullName:

    @pytest.mark.parametrize("full_name, first, last", [
        ('Jeanne Duffy', 'Jeanne', 'Duffy'),
        ('Mary  Ann   Carskadon', 'Mary Ann', 'Carskadon'),
        ('Klerman, Elizabeth', 'Elizabeth', 'Klerman'),
        ('Czeisler', None, 'Czeisler'),
        ('', None, None),
        (None, None, None),
    ])
    def test_split(self, full_name, first, last):
        assert StringUtils.split_full_name(full_name) == {'first_name': first, 'last_name': last}


class TestBlankAndConversions:

    def test_is_blank(self):
        assert StringUtils.is_blank(None)
        assert StringUtils.is_blank(' \t')
        assert not StringUtils.is_blank(0)
        assert not StringUtils.is_blank('0')

    def test_safe_conversions(self):
        assert ValidationUtils.safe_float_conversion(' 1.25 ') == 1.25
        assert ValidationUtils.safe_float_conversion(None) is None

    def test_all_none(self):
        assert ValidationUtils.all_none([])
        assert ValidationUtils.all_none([None, None])
        assert not ValidationUtils.all_none([None, 0])
