"""Configuration from the JSON config file and environment variables."""
import json
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from processor.models import AttendanceModeFilter, Segment


class SegmentConfig(BaseModel):
    """One entry of the config file's segments list."""
    model_config = ConfigDict(populate_by_name=True)

    identifier: str = Field(pattern=r'^[A-Za-z0-9][A-Za-z0-9._-]*$')
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius: float = Field(gt=0, description='Radius in km')
    attendance_mode_filter: AttendanceModeFilter = Field(
        default=AttendanceModeFilter.ALL, alias='attendanceModeFilter'
    )

    def to_segment(self) -> Segment:
        return Segment(
            identifier=self.identifier,
            latitude=self.latitude,
            longitude=self.longitude,
            radius_km=self.radius,
            attendance_mode_filter=self.attendance_mode_filter
        )


class FileConfig(BaseModel):
    """Contents of config.json."""
    model_config = ConfigDict(populate_by_name=True)

    firehose_base_url: Optional[str] = Field(default=None, alias='firehoseBaseUrl')
    firehose_api_key: Optional[str] = Field(default=None, alias='firehoseApiKey')
    segments: List[SegmentConfig]


@dataclass
class Settings:
    """Everything a run needs."""
    feed_base_url: str
    feed_api_key: Optional[str]
    segments: List[Segment]
    output_dir: Path
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    schedule_window: timedelta = timedelta(weeks=4)
    occurrence_window: timedelta = timedelta(weeks=1)
    min_request_delay_seconds: float = 0.01
    clean_output: bool = False

    @property
    def session_series_url(self) -> str:
        return f"{self.feed_base_url}session-series"

    @property
    def scheduled_sessions_url(self) -> str:
        return f"{self.feed_base_url}scheduled-sessions"


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build settings from the config file and environment variables.

    Environment variables:
        CONFIG_FILE: Path to the JSON config file (default: config.json)
        FEED_BASE_URL / FEED_API_KEY: Override firehoseBaseUrl / firehoseApiKey
        OUTPUT_DIR: Output directory (default: output)
        LOG_LEVEL: Logging level (default: INFO)
        TIMEOUT_SECONDS: HTTP timeout (default: 30)
        SCHEDULE_WINDOW_WEEKS: Generation window for schedules (default: 4)
        OCCURRENCE_WINDOW_WEEKS: Window for feed scheduled sessions (default: 1)
        MIN_REQUEST_DELAY_SECONDS: Delay between pages (default: 0.01)
        CLEAN_OUTPUT: Empty the output directory first (default: false)

    Raises:
        FileNotFoundError: If the config file does not exist
        pydantic.ValidationError: If the config file is invalid
        ValueError: If no feed base URL is configured or a number is malformed
    """
    env = os.environ if environ is None else environ
    config_path = Path(env.get('CONFIG_FILE', 'config.json'))
    with open(config_path, 'r', encoding='utf-8') as f:
        file_config = FileConfig.model_validate(json.load(f))

    feed_base_url = env.get('FEED_BASE_URL') or file_config.firehose_base_url
    if not feed_base_url:
        raise ValueError('No feed base URL: set firehoseBaseUrl or FEED_BASE_URL')

    return Settings(
        feed_base_url=feed_base_url,
        feed_api_key=env.get('FEED_API_KEY') or file_config.firehose_api_key,
        segments=[segment.to_segment() for segment in file_config.segments],
        output_dir=Path(env.get('OUTPUT_DIR', 'output')),
        log_level=env.get('LOG_LEVEL', 'INFO'),
        timeout_seconds=int(env.get('TIMEOUT_SECONDS', '30')),
        schedule_window=timedelta(weeks=float(env.get('SCHEDULE_WINDOW_WEEKS', '4'))),
        occurrence_window=timedelta(weeks=float(env.get('OCCURRENCE_WINDOW_WEEKS', '1'))),
        min_request_delay_seconds=float(env.get('MIN_REQUEST_DELAY_SECONDS', '0.01')),
        clean_output=_env_bool(env.get('CLEAN_OUTPUT', 'false'))
    )
