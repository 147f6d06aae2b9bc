"""Tests for settings loading and validation."""

from decimal import Decimal

import pytest

from config import DEFAULTS, SettingsError
from config.lib.load_settings_conf import load_settings_conf, validate_settings

def defaults(**overrides):
    settings = dict(DEFAULTS)
    settings.update(overrides)
    return settings

def test_defaults_validate():
    settings = validate_settings(defaults())

    assert settings['processing_fee'] == Decimal('0.99')
    assert settings['large_contribution_threshold'] == Decimal('100')
    assert settings['address_index_offset'] == 10000
    assert settings['admin_ids'] == []

def test_admin_ids_parsed():
    settings = validate_settings(defaults(admin_ids='1001, 1002,'))
    assert settings['admin_ids'] == [1001, 1002]

@pytest.mark.parametrize('overrides', [
    {'processing_fee': '-1'},
    {'processing_fee': 'free'},
    {'min_fiat_amount': '100', 'max_fiat_amount': '10'},
    {'min_fiat_amount': '0'},
    {'address_index_offset': 'ten'},
    {'scanner_interval': '0'},
    {'admin_ids': 'alice,bob'},
])
def test_invalid_settings(overrides):
    with pytest.raises(SettingsError):
        validate_settings(defaults(**overrides))

def test_load_from_file(tmp_path, monkeypatch):
    """Test settings.conf values apply and environment variables win."""
    (tmp_path / 'settings.conf').write_text(
        "[DEFAULT]\n"
        "processing_fee = 1.50\n"
        "admin_ids = 7\n"
        "scanner_interval = 60\n"
    )
    monkeypatch.setenv('BOUNTY_SCANNER_INTERVAL', '15')

    settings = load_settings_conf(str(tmp_path))

    assert settings['processing_fee'] == Decimal('1.50')
    assert settings['admin_ids'] == [7]
    assert settings['scanner_interval'] == 15
    assert settings['db_url'] == DEFAULTS['db_url']

def test_missing_file_uses_defaults(tmp_path):
    settings = load_settings_conf(str(tmp_path))
    assert settings['max_fiat_amount'] == Decimal('5000.00')

def test_missing_db_url(tmp_path, monkeypatch):
    monkeypatch.setenv('BOUNTY_DB_URL', '')

    with pytest.raises(SettingsError):
        load_settings_conf(str(tmp_path))
