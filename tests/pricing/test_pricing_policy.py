"""Tests for the brand policy document parser."""

import pytest
from pydantic import ValidationError

from shopwarden.pricing.policy import PricingPolicy, load_policy, parse_policy_document

TURKISH_DOC = """
# Marka Kuralları

- Minimum Kar Marjı: %20
- Maksimum İndirim: %25
- Acil Durdurma Marjı: %8

Fiyat stratejisi: Agresif
"""

ENGLISH_DOC = """
Min Margin: 18.5%
Max Discount: 40
Kill Switch Margin: 6
We prefer a conservative approach.
"""


class TestParse:
    def test_turkish_document(self):
        policy = parse_policy_document(TURKISH_DOC)
        assert policy.min_margin_pct == 20
        assert policy.max_discount_pct == 25
        assert policy.kill_switch_margin_pct == 8
        assert policy.strategy == "aggressive"

    def test_english_document(self):
        policy = parse_policy_document(ENGLISH_DOC)
        assert policy.min_margin_pct == 18.5
        assert policy.max_discount_pct == 40
        assert policy.kill_switch_margin_pct == 6
        assert policy.strategy == "conservative"

    def test_decimal_comma(self):
        assert parse_policy_document("Minimum Kar Marjı: %12,5").min_margin_pct == 12.5

    def test_empty_document_defaults(self):
        policy = parse_policy_document("")
        assert policy == PricingPolicy()
        assert (policy.min_margin_pct, policy.max_discount_pct, policy.kill_switch_margin_pct) == (15, 30, 5)
        assert policy.strategy == "smart"

    def test_partial_document_keeps_other_defaults(self):
        policy = parse_policy_document("Min Margin: 25")
        assert policy.min_margin_pct == 25
        assert policy.kill_switch_margin_pct == 5

    def test_out_of_range_falls_back(self):
        assert parse_policy_document("Min Margin: 150") == PricingPolicy()

    def test_out_of_range_field_keeps_the_rest(self):
        policy = parse_policy_document("Min Margin: 150\nMax Discount: 20\nAggressive")
        assert policy.min_margin_pct == 15
        assert policy.max_discount_pct == 20
        assert policy.strategy == "aggressive"

    def test_kill_switch_above_floor_is_clamped(self):
        policy = parse_policy_document("Min Margin: 10\nKill Switch: 12")
        assert policy.min_margin_pct == 10
        assert policy.kill_switch_margin_pct == 10

    def test_low_floor_keeps_document(self):
        policy = parse_policy_document("Fiyat: Agresif\nMinimum Kar Marjı: %3\nMaksimum İndirim: %20")
        assert policy.strategy == "aggressive"
        assert policy.min_margin_pct == 3
        assert policy.max_discount_pct == 20
        assert policy.kill_switch_margin_pct == 3


class TestModel:
    def test_invalid_strategy_rejected(self):
        with pytest.raises(ValidationError):
            PricingPolicy(strategy="reckless")

    def test_kill_switch_must_not_exceed_floor(self):
        with pytest.raises(ValidationError):
            PricingPolicy(min_margin_pct=5, kill_switch_margin_pct=6)


class TestLoad:
    def test_missing_file_defaults(self, tmp_path):
        assert load_policy(tmp_path / "BRAND.md") == PricingPolicy()

    def test_reads_file(self, tmp_path):
        path = tmp_path / "BRAND.md"
        path.write_text(TURKISH_DOC, encoding="utf-8")
        assert load_policy(path).min_margin_pct == 20

    def test_unreadable_file_defaults(self, tmp_path):
        path = tmp_path / "BRAND.md"
        path.write_bytes(b"\xff\xfe\x00bad")
        assert load_policy(path) == PricingPolicy()
