"""
Tests for risk manager configuration loading.
"""

import pytest

from core.exceptions import InvalidConfigError
from risk_manager import RiskLimits, get_default_config, load_config_from_dict


class TestRiskLimitsFromStore:

    def test_missing_keys_keep_defaults(self):
        limits = RiskLimits.from_mapping({"MAX_POSITIONS": "4", "UNRELATED": "x"})

        assert limits.max_positions == 4
        assert limits.max_drawdown_pct == pytest.approx(0.14)

    def test_integer_keys_accept_float_text(self):
        assert RiskLimits.from_mapping({"MAX_TRADES_PER_SYMBOL_HOUR": "3.0"}).max_trades_per_symbol_hour == 3

    def test_custom_defaults(self):
        defaults = RiskLimits(max_positions=7)
        assert RiskLimits.from_mapping({}, defaults=defaults).max_positions == 7

    @pytest.mark.parametrize("raw", ["lots", "-0.1"])
    def test_unusable_values(self, raw):
        with pytest.raises(InvalidConfigError) as exc:
            RiskLimits.from_mapping({"MAX_DRAWDOWN_PCT": raw})
        assert exc.value.key == "MAX_DRAWDOWN_PCT"


class TestLoadConfig:

    def test_defaults(self):
        config = get_default_config()

        assert config.kill_switch.level_3.consecutive_losses == 5
        assert config.reference.static_correlation("GBPUSD", "EURUSD") == pytest.approx(0.8)

    def test_nested_overrides(self):
        config = load_config_from_dict({
            "kill_switch": {"level_3": {"drawdown_pct": 0.10}},
            "reference": {
                "atr": {"EURUSD": 0.0011},
                "static_correlations": {"EURUSD_CHFJPY": 0.3},
            },
            "hourly_window_minutes": 30,
        })

        assert config.kill_switch.level_3.drawdown_pct == pytest.approx(0.10)
        assert config.kill_switch.level_3.consecutive_losses == 5
        assert config.reference.atr_for("EURUSD") == pytest.approx(0.0011)
        assert config.reference.atr_for("GBPUSD") == pytest.approx(0.0015)
        assert config.reference.static_correlation("CHFJPY", "EURUSD") == pytest.approx(0.3)
        assert config.hourly_window_minutes == 30
