"""Tests for SettingsService."""

from pathlib import Path
from unittest.mock import patch

import pytest
import tomlkit
from pydantic import ValidationError

from domain.models import CacheSettings
from services.settings_service import SettingsService, default_settings_dir


class TestSettingsService:
    """Tests for TOML persistence of CacheSettings."""

    def test_missing_file_gives_defaults(self, tmp_path):
        service = SettingsService(tmp_path)
        assert service.load() == CacheSettings()

    def test_save_and_load(self, tmp_path):
        service = SettingsService(tmp_path / 'nested')
        settings = CacheSettings(radius_km=3.5, zoom_levels=[12, 13], base_map='OpenTopoMap')

        path = service.save(settings)

        assert path == tmp_path / 'nested' / 'cache_settings.toml'
        data = tomlkit.parse(path.read_text(encoding='utf-8'))
        assert data['radius_km'] == 3.5
        assert service.load() == settings

    def test_save_accepts_dict(self, tmp_path):
        service = SettingsService(tmp_path)
        service.save({'radius_km': 2})
        assert service.load().radius_km == 2

    def test_save_rejects_invalid(self, tmp_path):
        service = SettingsService(tmp_path)
        with pytest.raises(ValidationError):
            service.save({'batch_size': 0})
        assert not service.path.exists()

    def test_broken_file_gives_defaults(self, tmp_path, caplog):
        service = SettingsService(tmp_path)
        service.path.write_text('radius_km = [unclosed', encoding='utf-8')
        assert service.load() == CacheSettings()
        assert 'Failed to load cache settings' in caplog.text

    def test_invalid_values_give_defaults(self, tmp_path):
        service = SettingsService(tmp_path)
        service.path.write_text('zoom_levels = [40]\n', encoding='utf-8')
        assert service.load() == CacheSettings()

    def test_unknown_keys_ignored(self, tmp_path):
        service = SettingsService(tmp_path)
        service.path.write_text('radius_km = 4.0\nold_key = "x"\n', encoding='utf-8')
        assert service.load().radius_km == 4.0

    def test_update(self, tmp_path):
        service = SettingsService(tmp_path)
        service.save(CacheSettings(radius_km=3))

        updated = service.update(zoom_levels=[11])

        assert updated.radius_km == 3
        assert updated.zoom_levels == [11]
        assert service.load() == updated

    def test_reset(self, tmp_path):
        service = SettingsService(tmp_path)
        service.save(CacheSettings(radius_km=1))
        assert service.reset() == CacheSettings()
        assert not service.path.exists()


class TestDefaultSettingsDir:
    def test_appdata(self, monkeypatch, tmp_path):
        monkeypatch.setenv('APPDATA', str(tmp_path))
        with patch('services.settings_service.is_portable_mode', return_value=False):
            assert default_settings_dir() == tmp_path / 'OfflineTiles' / 'configs'

    def test_xdg(self, monkeypatch, tmp_path):
        monkeypatch.delenv('APPDATA', raising=False)
        monkeypatch.setenv('XDG_CONFIG_HOME', str(tmp_path))
        with patch('services.settings_service.is_portable_mode', return_value=False):
            assert default_settings_dir() == tmp_path / 'offlinetiles'

    def test_portable(self):
        with patch('services.settings_service.is_portable_mode', return_value=True), \
                patch('services.settings_service.get_portable_path', return_value=Path('/app/configs')):
            assert default_settings_dir() == Path('/app/configs')
