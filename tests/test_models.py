"""
Tests for models.py.

Covers:
  - canonical_category matching
  - PipelineOptions.from_dict: camelCase / snake_case keys, string flags,
    bad input
  - PipelineResult / BatchResult JSON shapes
"""
from __future__ import annotations

import pytest

from models import (
    BatchItem, BatchResult, PipelineOptions, PipelineResult, canonical_category,
)


class TestCanonicalCategory:
    def test_case_insensitive(self):
        assert canonical_category("electronics") == "Electronics"
        assert canonical_category("  home & garden ") == "Home & Garden"

    def test_unknown_or_empty(self):
        assert canonical_category("Gadgets") is None
        assert canonical_category("") is None
        assert canonical_category(None) is None


class TestPipelineOptions:
    def test_defaults(self):
        opts = PipelineOptions.from_dict(None)
        assert opts == PipelineOptions()
        assert opts.skip_step1 is False
        assert opts.llm_model is None

    def test_camel_case_keys(self):
        opts = PipelineOptions.from_dict({
            "skipStep1": False, "skipStep2": True, "skipPricing": 1,
            "llmModel": "gpt-4o", "manualCategory": "Furniture",
        })
        assert opts.skip_step2 is True
        assert opts.skip_pricing is True
        assert opts.llm_model == "gpt-4o"
        assert opts.category == "Furniture"

    def test_snake_case_keys_and_unknown_ignored(self):
        opts = PipelineOptions.from_dict({"skip_step3": True, "whatever": 1})
        assert opts.skip_step3 is True

    def test_string_flags(self):
        opts = PipelineOptions.from_dict({"skipStep1": "false", "skipPricing": "0", "skipStep3": "Yes"})
        assert opts.skip_step1 is False
        assert opts.skip_pricing is False
        assert opts.skip_step3 is True

    @pytest.mark.parametrize("value", ["maybe", 2, [True], {"x": 1}])
    def test_bad_flag_rejected(self, value):
        with pytest.raises(ValueError, match="skipStep2"):
            PipelineOptions.from_dict({"skipStep2": value})

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            PipelineOptions.from_dict(["skipStep1"])


class TestSerialisation:
    def test_pipeline_result_drops_none(self):
        result = PipelineResult(
            image_url="https://x/img.jpg", processed_at="t", total_duration_ms=5, status="error",
            error="boom",
        )
        data = result.to_dict()
        assert data["error"] == "boom"
        assert "step1" not in data
        assert "final_product" not in data
        assert data["pipeline_version"] == "1.0.0"

    def test_batch_result_shape(self):
        ok = PipelineResult(image_url="a", processed_at="t", total_duration_ms=1, status="success")
        batch = BatchResult(
            status="partial", total_images=2, successful=1, failed=1,
            results=[BatchItem("a", data=ok), BatchItem("b", error="nope")],
        )
        data = batch.to_dict()
        assert data["results"][0]["data"]["status"] == "success"
        assert "error" not in data["results"][0]
        assert data["results"][1] == {"image_url": "b", "error": "nope"}
