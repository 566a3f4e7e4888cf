# tests/common/test_constants.py
"""
Тесты для модуля констант.
"""

import pytest

from src.common.constants import (
    TOPIC_ALL,
    AmbiguousTripPolicy,
    OverflowPolicy,
    StorageBackend,
    TripStatus,
    TypeMsg,
    bus_topic,
    route_topic,
)


class TestTypeMsg:
    """Тесты для enum TypeMsg."""

    def test_type_msg_values(self) -> None:
        """Проверяет значения типов сообщений."""
        assert TypeMsg.DEBUG.value == "debug"
        assert TypeMsg.INFO.value == "info"
        assert TypeMsg.WARNING.value == "warning"
        assert TypeMsg.ERROR.value == "error"
        assert TypeMsg.CRITICAL.value == "critical"

    def test_type_msg_is_str_enum(self) -> None:
        assert isinstance(TypeMsg.DEBUG, str)
        assert TypeMsg.INFO == "info"


class TestTripStatus:
    """Тесты для enum TripStatus."""

    def test_values(self) -> None:
        assert [s.value for s in TripStatus] == ["scheduled", "in_progress", "completed", "cancelled"]

    def test_str_is_value(self) -> None:
        assert str(TripStatus.IN_PROGRESS) == "in_progress"

    @pytest.mark.parametrize("raw", ["flying", "IN_PROGRESS", ""])
    def test_unknown_value(self, raw: str) -> None:
        with pytest.raises(ValueError):
            TripStatus(raw)


class TestPolicies:
    def test_policy_values(self) -> None:
        assert OverflowPolicy("drop_oldest") is OverflowPolicy.DROP_OLDEST
        assert OverflowPolicy("close") is OverflowPolicy.CLOSE
        assert AmbiguousTripPolicy("latest") is AmbiguousTripPolicy.LATEST
        assert AmbiguousTripPolicy("reject") is AmbiguousTripPolicy.REJECT
        assert StorageBackend("memory") is StorageBackend.MEMORY


class TestTopics:
    """Тесты имён топиков."""

    def test_bus_topic(self) -> None:
        assert bus_topic("NB-1001") == "bus:NB-1001"

    def test_route_topic(self) -> None:
        assert route_topic("R001") == "route:R001"

    def test_all_topic(self) -> None:
        assert TOPIC_ALL == "all"
