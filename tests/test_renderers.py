from __future__ import annotations

import pytest

from core.features import FEATURES, get_feature
from core.stages import Stage
from core.store import MemoryObjectStorage
from ui import renderers


@pytest.mark.parametrize("key", list(FEATURES))
def test_every_feature_gets_a_complete_registry(key):
    registry = renderers.build_registry(get_feature(key), MemoryObjectStorage(), bucket="uploads", max_size_mb=10)
    assert registry.missing() == []
    assert isinstance(registry.get(Stage.MAPPING), renderers.FeatureMappingRenderer)
    assert isinstance(registry.get(Stage.VISUALIZATION), renderers.FeatureVisualizationRenderer)


def test_business_reporting_uses_manual_entry_input():
    registry = renderers.build_registry(get_feature("business-reporting"), MemoryObjectStorage(), bucket="uploads", max_size_mb=10)
    assert isinstance(registry.get(Stage.INPUT), renderers.ManualBusinessInputRenderer)


def test_incomplete_registry_is_rejected(monkeypatch):
    monkeypatch.setattr(
        renderers,
        "default_renderers",
        lambda feature, storage, **kwargs: [renderers.FileInputRenderer(feature, storage, **kwargs)],
    )
    with pytest.raises(LookupError, match="processing, storage"):
        renderers.build_registry(get_feature("demand-forecasting"), MemoryObjectStorage(), bucket="uploads", max_size_mb=10)
