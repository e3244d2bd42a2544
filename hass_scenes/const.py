"""Constants for the Home Assistant scene engine."""
import os

DOMAIN = "hass_scenes"

# Settings / storage locations
CONFIG_DIR = os.environ.get(
    "HA_SCENES_CONFIG_DIR",
    os.path.join(os.path.expanduser("~"), ".config", "ha-mcp-server"),
)
CONFIG_FILE = "config.json"
BACKUP_FILE = "scene_backup.json"

ENV_URL = "HA_URL"
ENV_TOKEN = "HA_TOKEN"
ENV_VERIFY_SSL = "HA_VERIFY_SSL"
ENV_LOG_LEVEL = "HA_SCENES_LOG_LEVEL"

CONF_URL = "ha_url"
CONF_TOKEN = "ha_token"
CONF_VERIFY_SSL = "verify_ssl"

# Remote call layer
MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds, multiplied by attempt number
SERVICE_TIMEOUT = 5.0  # per light operation, covers all retries
REQUEST_TIMEOUT = 30.0

# Activation pacing (seconds)
EXCLUSIVE_SETTLE_DELAY = 0.5
RATE_LIMIT_DELAY = 0.05
MODE_SWITCH_DELAY = 0.5
VERIFY_SETTLE_DELAY = 0.3

# Snapshot ring buffer bound (system-wide)
MAX_SNAPSHOTS = 50

STORAGE_SCHEMA_VERSION = 1

LIGHT_DOMAIN = "light"
SCENE_DOMAIN = "scene"

# Attributes copied from a light's state when capturing a scene.
# Static ones are kept so the controller can restore the light later.
SCENE_ATTRIBUTES = (
    "brightness",
    "color_temp",
    "color_temp_kelvin",
    "rgb_color",
    "hs_color",
    "xy_color",
    "color_mode",
    "effect",
    "min_color_temp_kelvin",
    "max_color_temp_kelvin",
    "min_mireds",
    "max_mireds",
    "effect_list",
    "supported_color_modes",
    "supported_features",
    "friendly_name",
    "off_with_transition",
    "off_brightness",
)

# Colour keys in order of preference when building a command
COLOR_KEYS = ("rgb_color", "color_temp_kelvin", "color_temp", "hs_color", "xy_color")
