"""
Unit tests for the catalog cache.
"""

from datetime import date
from decimal import Decimal

from pharmapos.services import cache_service
from pharmapos.services.cache_service import CacheService


class TestCacheService:

    def test_keys_are_tenant_isolated(self, app):
        cache = CacheService(app)
        assert cache._build_key(1, 'promotions', 'active') == 'pharmapos:tenant:1:promotions:active'
        assert cache._build_key(1, 'promotions', 'active') != cache._build_key(2, 'promotions', 'active')

    def test_serialization_keeps_decimals_and_dates(self, app):
        cache = CacheService(app)
        rows = [{'id': 1, 'value': Decimal('12.50'), 'start_date': date(2026, 1, 1), 'conditions': None}]
        assert cache._deserialize(cache._serialize(rows)) == rows

    def test_disabled_cache_degrades_to_loader(self, app):
        cache = CacheService(app)
        assert cache.is_available() is False
        assert cache.get(1, 'combos', 'active') is None
        assert cache.memoize(1, 'combos', 'active', lambda: ['loaded']) == ['loaded']
        assert cache.invalidate_module(1, 'combos') == 0

    def test_cached_helper_calls_loader_each_time_without_redis(self):
        calls = []

        def loader():
            calls.append(1)
            return [{'id': len(calls)}]

        assert cache_service.cached(1, cache_service.COMBOS, 'active', loader) == [{'id': 1}]
        assert cache_service.cached(1, cache_service.COMBOS, 'active', loader) == [{'id': 2}]
        cache_service.invalidate(1, cache_service.COMBOS, cache_service.PROMOTIONS)
