"""Unit tests for settings loading."""
import json
from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from processor.models import AttendanceModeFilter
from settings import load_settings


@pytest.fixture
def config_data():
    """Create a minimal valid config file body."""
    return {
        'firehoseBaseUrl': 'https://firehose.example.com/',
        'firehoseApiKey': 'secret',
        'segments': [
            {'identifier': 'london', 'latitude': 51.5074, 'longitude': -0.1278, 'radius': 15,
             'attendanceModeFilter': 'physical-only'},
            {'identifier': 'online', 'latitude': 0, 'longitude': 0, 'radius': 1}
        ]
    }


@pytest.fixture
def write_config(tmp_path):
    """Return a helper that writes a config file and the env pointing at it."""
    def write(data):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps(data))
        return {'CONFIG_FILE': str(path)}
    return write


class TestLoadSettings:
    """Test cases for load_settings."""

    def test_defaults(self, config_data, write_config):
        """Test settings built from the file alone."""
        settings = load_settings(write_config(config_data))

        assert settings.feed_base_url == 'https://firehose.example.com/'
        assert settings.feed_api_key == 'secret'
        assert settings.output_dir == Path('output')
        assert settings.log_level == 'INFO'
        assert settings.timeout_seconds == 30
        assert settings.schedule_window == timedelta(weeks=4)
        assert settings.occurrence_window == timedelta(weeks=1)
        assert settings.min_request_delay_seconds == 0.01
        assert settings.clean_output is False

    def test_segments(self, config_data, write_config):
        """Test that segments keep their order and filters."""
        segments = load_settings(write_config(config_data)).segments

        assert [s.identifier for s in segments] == ['london', 'online']
        assert segments[0].radius_km == 15
        assert segments[0].attendance_mode_filter == AttendanceModeFilter.PHYSICAL_ONLY
        assert segments[1].attendance_mode_filter == AttendanceModeFilter.ALL

    def test_feed_urls(self, config_data, write_config):
        """Test the feed URLs derived from the base URL."""
        settings = load_settings(write_config(config_data))

        assert settings.session_series_url == 'https://firehose.example.com/session-series'
        assert settings.scheduled_sessions_url == (
            'https://firehose.example.com/scheduled-sessions'
        )

    def test_environment_overrides(self, config_data, write_config, tmp_path):
        """Test that environment variables win over the file."""
        env = write_config(config_data)
        env.update({
            'FEED_BASE_URL': 'https://other.example.com/',
            'FEED_API_KEY': 'other-secret',
            'OUTPUT_DIR': str(tmp_path / 'out'),
            'LOG_LEVEL': 'DEBUG',
            'TIMEOUT_SECONDS': '10',
            'SCHEDULE_WINDOW_WEEKS': '2',
            'OCCURRENCE_WINDOW_WEEKS': '0.5',
            'MIN_REQUEST_DELAY_SECONDS': '0',
            'CLEAN_OUTPUT': 'true'
        })

        settings = load_settings(env)

        assert settings.feed_base_url == 'https://other.example.com/'
        assert settings.feed_api_key == 'other-secret'
        assert settings.output_dir == tmp_path / 'out'
        assert settings.log_level == 'DEBUG'
        assert settings.timeout_seconds == 10
        assert settings.schedule_window == timedelta(weeks=2)
        assert settings.occurrence_window == timedelta(days=3, hours=12)
        assert settings.min_request_delay_seconds == 0
        assert settings.clean_output is True

    @pytest.mark.parametrize('value,expected', [
        ('1', True), ('yes', True), ('TRUE', True), ('0', False), ('no', False), ('', False)
    ])
    def test_clean_output_parsing(self, config_data, write_config, value, expected):
        env = write_config(config_data)
        env['CLEAN_OUTPUT'] = value

        assert load_settings(env).clean_output is expected

    def test_missing_base_url(self, config_data, write_config):
        """Test that a run without a feed base URL is refused."""
        del config_data['firehoseBaseUrl']

        with pytest.raises(ValueError, match='No feed base URL'):
            load_settings(write_config(config_data))

    def test_base_url_from_environment_only(self, config_data, write_config):
        del config_data['firehoseBaseUrl']
        env = write_config(config_data)
        env['FEED_BASE_URL'] = 'https://env.example.com/'

        assert load_settings(env).feed_base_url == 'https://env.example.com/'

    def test_missing_config_file(self, tmp_path):
        """Test that a missing config file raises."""
        with pytest.raises(FileNotFoundError):
            load_settings({'CONFIG_FILE': str(tmp_path / 'missing.json')})

    @pytest.mark.parametrize('overrides', [
        {'radius': 0},
        {'latitude': 95},
        {'identifier': '../escape'},
        {'attendanceModeFilter': 'sometimes'}
    ])
    def test_invalid_segment(self, config_data, write_config, overrides):
        """Test that malformed segments are rejected."""
        config_data['segments'][0].update(overrides)

        with pytest.raises(ValidationError):
            load_settings(write_config(config_data))

    def test_missing_segments(self, config_data, write_config):
        del config_data['segments']

        with pytest.raises(ValidationError):
            load_settings(write_config(config_data))

    def test_malformed_number(self, config_data, write_config):
        env = write_config(config_data)
        env['TIMEOUT_SECONDS'] = 'soon'

        with pytest.raises(ValueError):
            load_settings(env)
