"""
Utility functions for common patterns across the loading system.
"""

import re
from typing import Any, Optional, List, Iterable


class StringUtils:
    """Utility methods for string validation and processing."""

    # Cached regex patterns for performance
    _regex_cache = {
        'whitespace': re.compile(r'\s+'),
        'name_separator': re.compile(r'\s*,\s*'),
    }

    @staticmethod
    def safe_string_check(value: Any) -> bool:
        """
        Standardized string validation.

        Args:
            value: Value to check

        Returns:
            True if value is a non-empty string after stripping whitespace
        """
        return value is not None and str(value).strip() != ''

    @staticmethod
    def is_blank(value: Any) -> bool:
        """
        Check whether a cell value carries no data.

        None, empty and whitespace-only strings are blank; numbers (including 0) are not.
        """
        if value is None:
            return True
        if isinstance(value, str):
            return value.strip() == ''
        return False

    @staticmethod
    def normalize_whitespace(value: Any) -> str:
        """
        Normalize whitespace in string values.

        Args:
            value: Input value

        Returns:
            String with normalized whitespace
        """
        if value is None:
            return ''
        return StringUtils._regex_cache['whitespace'].sub(' ', str(value).strip())

    @staticmethod
    def split_multiple(value: Any, delimiter: str = ';') -> List[str]:
        """
        Split a multi-valued cell into trimmed parts.

        A missing value yields no parts and trailing empty parts are dropped,
        so 'a;b;' splits into two values.

        Examples:
            'a; b ;c' -> ['a', 'b', 'c']
            None      -> []
            '1.5'     -> ['1.5']
        """
        if value is None:
            return []
        parts = [part.strip() for part in str(value).split(delimiter)]
        while parts and parts[-1] == '':
            parts.pop()
        return parts

    @staticmethod
    def split_full_name(full_name: Any) -> dict:
        """
        Split a person's full name into first and last name.

        Supports 'First Last', 'First Middle Last' and 'Last, First'.
        """
        name = StringUtils.normalize_whitespace(full_name)
        if not name:
            return {'first_name': None, 'last_name': None}

        if ',' in name:
            last, first = StringUtils._regex_cache['name_separator'].split(name, maxsplit=1)
            return {'first_name': first or None, 'last_name': last or None}

        parts = name.split(' ')
        if len(parts) == 1:
            return {'first_name': None, 'last_name': parts[0]}
        return {'first_name': ' '.join(parts[:-1]), 'last_name': parts[-1]}


class ValidationUtils:
    """Utility methods for validation patterns."""

    @staticmethod
    def safe_float_conversion(value: Any, default: Optional[float] = None) -> Optional[float]:
        """
        Safely convert value to float.

        Args:
            value: Value to convert
            default: Default value if conversion fails

        Returns:
            Float value or default
        """
        if value is None:
            return default

        try:
            if isinstance(value, (int, float)):
                return float(value)
            return float(str(value).strip())
        except (ValueError, TypeError):
            return default

    @staticmethod
    def all_none(values: Iterable[Any]) -> bool:
        """True when every value is None (also for an empty iterable)."""
        return all(value is None for value in values)
