import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

from s3photos.errors import ConfigError

logger = logging.getLogger(__name__)

# === PATH CONFIGURATION ===
CONFIG_FILE = Path("s3photos_config.json")  # user settings (intervals, folders)
RESOURCES_FILE = Path("aws-resources.json")  # written by the setup wizard
DEFAULT_CACHE_DIR = Path("cache")

MANIFEST_FILENAME = "photos.json"
UPLOAD_NOTIFICATION_FILE = "last_upload.json"
UPDATE_NOTIFICATION_FILE = "last_update.json"

# Photos the setup wizard seeds the bucket with
SAMPLE_PHOTO_KEYS = [
    "samples/pexels-dan-mooham.jpg",
    "samples/pexels-matreding.jpg",
    "samples/pexels-pixabay.jpg",
]

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400

DEFAULTS = {
    "syncTimeHours": 1,
    "cacheLifeDays": 0,
    "selfieFolder": "selfies",
    "maxAttempts": 3,
    "downloadConcurrency": 4,
    "useLocalDiff": False,
    "notificationPollSeconds": 5,
    "logLevel": "INFO",
}


@dataclass
class SyncConfig:
    """
    Everything the helper needs at runtime, built once at startup
    and handed to each component.
    """

    bucket: str
    lambda_function: Optional[str] = None
    region: Optional[str] = None
    profile: Optional[str] = None
    cache_dir: Path = field(default_factory=lambda: DEFAULT_CACHE_DIR)
    sync_time_hours: float = 1
    cache_life_days: float = 0
    selfie_folder: str = "selfies"
    max_attempts: int = 3
    download_concurrency: int = 4
    use_local_diff: bool = False
    notification_poll_seconds: float = 5
    log_level: str = "INFO"

    def __post_init__(self):
        self.cache_dir = Path(self.cache_dir)
        # The display never refreshes more often than hourly
        if not self.sync_time_hours or self.sync_time_hours < 1:
            self.sync_time_hours = 1
        if self.cache_life_days < 0:
            self.cache_life_days = 0
        self.download_concurrency = max(1, int(self.download_concurrency))
        self.max_attempts = max(1, int(self.max_attempts))

    @property
    def manifest_path(self) -> Path:
        return self.cache_dir / MANIFEST_FILENAME

    @property
    def sync_interval_seconds(self) -> float:
        return self.sync_time_hours * SECONDS_PER_HOUR

    @property
    def cache_max_age_seconds(self) -> float:
        return self.cache_life_days * SECONDS_PER_DAY


def _read_json(path: Path) -> dict:
    with open(path, "r") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return data


def load_user_config(path: Path = CONFIG_FILE) -> dict:
    """
    Load the user's s3photos_config.json (intervals, folders, tuning).
    Fallback to defaults if not found.
    """
    config = dict(DEFAULTS)
    if path.exists():
        try:
            config.update(_read_json(path))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Config file '{path}' is not valid JSON: {e}") from e
    else:
        logger.info("Config file '%s' not found. Using defaults.", path)
    return config


def load_resources(path: Path = RESOURCES_FILE) -> Dict[str, str]:
    """
    Load bucket and function names from aws-resources.json.
    Returns an empty dict when the setup wizard has not been run.
    """
    if not path.exists():
        return {}
    try:
        return _read_json(path)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Resources file '{path}' is not valid JSON: {e}") from e


def load_config(
    config_file: Path = CONFIG_FILE,
    resources_file: Path = RESOURCES_FILE,
    environ: Optional[Mapping[str, str]] = None,
) -> SyncConfig:
    """
    Build the SyncConfig from the user config file, the resources file
    and the environment. Environment variables win over both files.
    """
    env = os.environ if environ is None else environ
    user = load_user_config(config_file)
    resources = load_resources(resources_file)

    bucket = env.get("BUCKET_NAME") or resources.get("s3Bucket") or user.get("bucket")
    lambda_function = (
        env.get("LAMBDA_FUNCTION_NAME")
        or resources.get("lambdaFunction")
        or user.get("lambdaFunction")
    )
    region = (
        env.get("AWS_REGION")
        or env.get("AWS_DEFAULT_REGION")
        or resources.get("region")
        or user.get("region")
    )
    cache_dir = env.get("S3PHOTOS_CACHE_DIR") or user.get("cacheDir") or DEFAULT_CACHE_DIR

    if not bucket:
        raise ConfigError(
            "No bucket configured. Set BUCKET_NAME or run the setup wizard "
            f"to create {resources_file}."
        )

    use_local_diff = bool(user.get("useLocalDiff", False))
    if not lambda_function and not use_local_diff:
        raise ConfigError(
            "No diff function configured. Set LAMBDA_FUNCTION_NAME "
            "or enable useLocalDiff."
        )

    try:
        return SyncConfig(
            bucket=bucket,
            lambda_function=lambda_function,
            region=region,
            profile=env.get("AWS_PROFILE") or user.get("profile"),
            cache_dir=Path(cache_dir),
            sync_time_hours=float(user.get("syncTimeHours", 1)),
            cache_life_days=float(user.get("cacheLifeDays", 0)),
            selfie_folder=user.get("selfieFolder", "selfies"),
            max_attempts=int(user.get("maxAttempts", 3)),
            download_concurrency=int(user.get("downloadConcurrency", 4)),
            use_local_diff=use_local_diff,
            notification_poll_seconds=float(user.get("notificationPollSeconds", 5)),
            log_level=str(user.get("logLevel", "INFO")).upper(),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid setting in {config_file}: {e}") from e
