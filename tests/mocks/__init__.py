"""
Test data builders for the pair trader.
"""

from tests.mocks.pair_data import (
    BAR,
    T0,
    bar_time,
    make_indicators,
    make_position,
    price_source,
)

__all__ = ['BAR', 'T0', 'bar_time', 'make_indicators', 'make_position', 'price_source']
