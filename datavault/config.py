import json
import os
import re
import tempfile
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""
    pass


class Config:
    """Base configuration"""

    DEBUG = False
    TESTING = False

    # Staging
    TEMP_DIR = os.environ.get('DATAVAULT_TEMP_DIR') or os.path.join(tempfile.gettempdir(), 'datavault_backups')

    # Logging
    LOG_DIR = os.environ.get('DATAVAULT_LOG_DIR') or os.path.join(os.path.expanduser('~'), '.datavault', 'logs')
    LOG_FILE_MAX_BYTES = 10485760  # 10MB
    LOG_FILE_BACKUP_COUNT = 10

    # Remote layout
    ROOT_FOLDER_NAME = 'DataVault'

    # Providers
    PCLOUD_API_URL = os.environ.get('PCLOUD_API_URL') or 'https://api.pcloud.com'
    HTTP_TIMEOUT = 30

    # Scheduler
    SCHEDULER_TIMEZONE = 'UTC'
    DEFAULT_INTERVAL = 3600
    MIN_INTERVAL = 60

    DEFAULT_CONFIG_FILE = 'datavault.json'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    LOG_DIR = None  # console logging only


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


@dataclass
class BackupSettings:
    """Resolved configuration for a DataVault process."""

    source_folder: str = ''
    backup_interval: int = Config.DEFAULT_INTERVAL
    gdrive_auth: str = ''
    pcloud_auth: str = ''
    s3_bucket: str = ''
    s3_region: str = 'us-east-1'
    s3_access_key: str = ''
    s3_secret_key: str = ''
    s3_endpoint_url: str = ''
    excludes: List[str] = field(default_factory=list)
    dry_run: bool = False
    verbose: bool = False

    @property
    def has_backend_credentials(self) -> bool:
        return bool(self.gdrive_auth or self.pcloud_auth or self.s3_bucket)


# Config file key -> BackupSettings attribute
FILE_KEYS = {
    'source_folder': 'source_folder',
    'backup_interval': 'backup_interval',
    'google_drive_auth': 'gdrive_auth',
    'pcloud_auth': 'pcloud_auth',
    's3_bucket': 's3_bucket',
    's3_region': 's3_region',
    's3_access_key': 's3_access_key',
    's3_secret_key': 's3_secret_key',
    's3_endpoint_url': 's3_endpoint_url',
    'excludes': 'excludes',
    'dry_run': 'dry_run',
    'verbose': 'verbose',
}

DEFAULT_CONFIG_FILE_VALUES = {
    'source_folder': '',
    'backup_interval': '1h',
    'google_drive_auth': '',
    'pcloud_auth': '',
    's3_bucket': '',
    'excludes': ['.git', '.DS_Store', 'Thumbs.db', '*.tmp', '*.log'],
    'dry_run': False,
    'verbose': False,
}

_DURATION_RE = re.compile(r'^(?:\d+(?:\.\d+)?(?:h|m|s))+$')
_DURATION_PART_RE = re.compile(r'(\d+(?:\.\d+)?)(h|m|s)')
_UNIT_SECONDS = {'h': 3600, 'm': 60, 's': 1}


def parse_interval(value: Any) -> int:
    """
    Parse a backup interval into seconds.

    Accepts plain seconds (3600, "3600") or duration strings such as
    "1h", "30m", "2h30m" and "1.5h".

    Raises:
        ConfigError: If the value cannot be parsed
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid backup interval: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip().lower()
    if text.isdigit():
        return int(text)

    if not text or not _DURATION_RE.match(text):
        raise ConfigError(f"Invalid backup interval: {value!r} (expected e.g. 1h, 30m, 2h30m)")

    total = sum(float(amount) * _UNIT_SECONDS[unit] for amount, unit in _DURATION_PART_RE.findall(text))
    return int(total)


def save_config_file(values: Dict[str, Any], config_path: str):
    """Write config values as indented JSON."""
    try:
        with open(config_path, 'w') as f:
            json.dump(values, f, indent=2)
            f.write('\n')
    except OSError as e:
        raise ConfigError(f"Failed to write config file: {e}")


def load_config_file(config_path: str, create_default: bool = True) -> Dict[str, Any]:
    """
    Load the JSON configuration file.

    A missing file is created with default values so it can be edited.

    Args:
        config_path: Path to the JSON config file
        create_default: Create the file with defaults when missing

    Returns:
        Dict of raw config values

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    if not os.path.exists(config_path):
        if not create_default:
            return {}
        values = dict(DEFAULT_CONFIG_FILE_VALUES)
        save_config_file(values, config_path)
        print(f"Created default configuration file at: {config_path}")
        print("Please edit the configuration file to set your source folder and authentication details.")
        return values

    try:
        with open(config_path, 'r') as f:
            values = json.load(f)
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {e}")
    except ValueError as e:
        raise ConfigError(f"Failed to parse config file: {e}")

    if not isinstance(values, dict):
        raise ConfigError("Failed to parse config file: top-level value must be an object")

    return values


def merge_config(file_values: Dict[str, Any], flags: Dict[str, Any]) -> BackupSettings:
    """
    Merge config file values with command line flags.

    Flags that were given take precedence; config file values fill the
    rest. Boolean options are enabled if either source enables them.

    Args:
        file_values: Raw values from load_config_file()
        flags: Flag values keyed by BackupSettings attribute; None or '' means unset

    Returns:
        Resolved BackupSettings (not yet validated)
    """
    resolved: Dict[str, Any] = {}

    for file_key, attr in FILE_KEYS.items():
        if file_key in file_values and file_values[file_key] not in (None, ''):
            resolved[attr] = file_values[file_key]

    for attr, value in flags.items():
        if value in (None, '', ()):
            continue
        if attr in ('dry_run', 'verbose'):
            resolved[attr] = bool(value) or bool(resolved.get(attr))
        else:
            resolved[attr] = value

    known = {f.name for f in fields(BackupSettings)}
    settings = BackupSettings(**{k: v for k, v in resolved.items() if k in known and k != 'backup_interval'})

    if 'backup_interval' in resolved:
        settings.backup_interval = parse_interval(resolved['backup_interval'])

    settings.excludes = list(settings.excludes or [])
    settings.dry_run = bool(settings.dry_run)
    settings.verbose = bool(settings.verbose)
    return settings


def validate_settings(settings: BackupSettings, min_interval: Optional[int] = None) -> BackupSettings:
    """
    Validate resolved settings and normalize the source path.

    Raises:
        ConfigError: If any setting is invalid
    """
    if min_interval is None:
        min_interval = Config.MIN_INTERVAL

    if not settings.source_folder:
        raise ConfigError("source folder must be specified")

    source = os.path.abspath(os.path.expanduser(settings.source_folder))
    if not os.path.exists(source):
        raise ConfigError(f"source folder does not exist: {settings.source_folder}")
    if not os.path.isdir(source):
        raise ConfigError(f"source folder is not a directory: {settings.source_folder}")
    settings.source_folder = source

    if not settings.has_backend_credentials:
        raise ConfigError("at least one cloud storage authentication must be configured")

    if settings.gdrive_auth:
        gdrive_auth = os.path.expanduser(settings.gdrive_auth)
        if not os.path.exists(gdrive_auth):
            raise ConfigError(f"Google Drive auth file does not exist: {settings.gdrive_auth}")
        settings.gdrive_auth = gdrive_auth

    if settings.backup_interval < min_interval:
        raise ConfigError(f"backup interval must be at least {min_interval} seconds")

    return settings
