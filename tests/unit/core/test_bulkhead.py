from __future__ import annotations

import threading

import pytest

from modules.core.bulkhead import Bulkhead, get_bulkhead
from modules.core.exceptions import RepositoryError, ServiceOverloaded

pytestmark = pytest.mark.unit


class TestBulkhead:
    def test_admits_within_capacity(self):
        bulkhead = Bulkhead("category", max_concurrent=2, timeout=0.1)
        with bulkhead.admit("find_by_id"):
            with bulkhead.admit("count"):
                pass

    def test_rejects_when_full(self):
        bulkhead = Bulkhead("category", max_concurrent=1, timeout=0.05)
        with bulkhead.admit("find_by_id"):
            with pytest.raises(ServiceOverloaded) as exc_info:
                with bulkhead.admit("count"):
                    pass
        assert exc_info.value.operation == "count"
        assert exc_info.value.entity == "category"
        assert isinstance(exc_info.value, RepositoryError)

    def test_slot_released_after_error(self):
        bulkhead = Bulkhead("category", max_concurrent=1, timeout=0.05)
        with pytest.raises(RuntimeError):
            with bulkhead.admit("save"):
                raise RuntimeError("boom")
        with bulkhead.admit("save"):
            pass

    def test_waiting_caller_admitted_when_slot_frees(self):
        bulkhead = Bulkhead("category", max_concurrent=1, timeout=2)
        holding = threading.Event()
        release = threading.Event()

        def holder():
            with bulkhead.admit("slow"):
                holding.set()
                release.wait(2)

        thread = threading.Thread(target=holder)
        thread.start()
        holding.wait(2)
        threading.Timer(0.05, release.set).start()
        with bulkhead.admit("fast"):
            pass
        thread.join(2)

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            Bulkhead("category", max_concurrent=0, timeout=1)


class TestRegistry:
    def test_one_bulkhead_per_name(self):
        assert get_bulkhead("product") is get_bulkhead("product")
        assert get_bulkhead("product") is not get_bulkhead("category")

    def test_sized_from_settings(self, settings):
        settings.DATA_LAYER = {
            **settings.DATA_LAYER,
            "MAX_CONCURRENT_QUERIES": 3,
            "ADMISSION_TIMEOUT": 0.5,
        }
        bulkhead = get_bulkhead("region")
        assert bulkhead.max_concurrent == 3
        assert bulkhead.timeout == 0.5
