"""
Shared fixtures for catalog sync tests.
"""

from datetime import datetime, timezone
from typing import Any, Dict

import pytest

from ..bus import ChangeBus
from ..loader import CascadingLoader
from ..models import CatalogSnapshot, Collection, SettingsAggregate, SettingsSnapshot
from ..sources.local_source import LocalCacheSource, LocalStore
from .fakes import RecordingLogger


def make_test(test_id: str = "marquis-test", name: str = "Marquis Test", **extra: Any) -> Dict[str, Any]:
    """Wire-format test definition."""
    test = {
        "id": test_id,
        "name": {"en": name, "ar": "اختبار"},
        "description": {"en": f"{name} description", "ar": "وصف"},
        "chemicalComponents": [
            {"name": {"en": "Sulfuric acid", "ar": "حمض الكبريتيك"}, "formula": {"en": "H2SO4", "ar": "H2SO4"}},
        ],
        "instructions": [
            {"text": {"en": "Add one drop", "ar": "أضف قطرة"}},
        ],
        "colorResults": [
            {
                "colorHex": "#800080",
                "result": {"en": "Purple", "ar": "أرجواني"},
                "substance": {"en": "Heroin", "ar": "الهيروين"},
                "confidence": "high",
            },
        ],
        "preparation": {"en": "Mix reagents", "ar": "اخلط الكواشف"},
        "testType": "F/L",
    }
    if test_id is None:
        test.pop("id")
    test.update(extra)
    return test


def ts(day: int) -> datetime:
    return datetime(2025, 1, day, tzinfo=timezone.utc)


def catalog(*ids: str, day: int = 1) -> CatalogSnapshot:
    return CatalogSnapshot.model_validate({
        "testDefinitions": [make_test(i, i.title()) for i in ids],
        "lastUpdated": ts(day).isoformat() if day else None,
    })


def settings_snapshot(day: int = 1, **fields: Any) -> SettingsSnapshot:
    return SettingsSnapshot(settings=SettingsAggregate(**fields), last_updated=ts(day))


@pytest.fixture
def logger():
    return RecordingLogger()


@pytest.fixture
def bus(logger):
    return ChangeBus(logger)


@pytest.fixture
def loader(logger):
    return CascadingLoader(logger)


@pytest.fixture
def store():
    return LocalStore()


@pytest.fixture
def local_catalog(store, logger):
    return LocalCacheSource(Collection.CATALOG, store, logger)


@pytest.fixture
def local_settings(store, logger):
    return LocalCacheSource(Collection.SETTINGS, store, logger)
