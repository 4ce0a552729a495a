import sys

DOMAIN = "bambu_obs"

# MQTT defaults
DEFAULT_MQTT_PORT = 8883
DEFAULT_FTP_PORT = 990
DEFAULT_USERNAME = "bblp"
REPORT_TOPIC = "device/{serial}/report"
MQTT_RECONNECT_INTERVAL = 1.0
# CONNACK refusals that mean bad credentials (v3.1.1: 4, 5; v5: 134, 135)
NOT_AUTHORIZED_CODES = {4, 5, 134, 135}

# Message pipeline
QUEUE_CAPACITY = 5
THROTTLE_SEC = 0.01

# Stage policy
DEFERRED_DELAY_SEC = 5.0
DEFERRED_SPACING_SEC = 0.25

# OBS websocket
OBS_SUBPROTOCOL = "obswebsocket.json"
OBS_RPC_VERSION = 1
OBS_REQUEST_TIMEOUT = 10
RECONNECT_BACKOFF = [1, 2, 5, 10, 20, 30]
OBS_NOT_FOUND = 600
OBS_AUTH_FAILED = 4009
PROVISION_BACKOFF_SEC = 0.1

VIDEO_WIDTH = 1920
VIDEO_HEIGHT = 1080
VIDEO_FPS = 30

TEXT_INPUT_KIND = "text_gdiplus_v3" if sys.platform == "win32" else "text_ft2_source_v2"
IMAGE_INPUT_KIND = "image_source"
COLOR_INPUT_KIND = "color_source_v3"
VIDEO_INPUT_KIND = "ffmpeg_source"
FFMPEG_OPTIONS = "protocol_whitelist=file,udp,rtp"
MEDIA_STATE_PLAYING = "OBS_MEDIA_STATE_PLAYING"

# Printer stage mapping (stg_cur), from the slicer's device manager
# -1 and 255 both mean idle
IDLE_STAGE = -1
STAGE_NAMES = {
    -1: "Idle",
    0: "Printing",
    1: "Auto bed leveling",
    2: "Heatbed preheating",
    3: "Vibration compensation",
    4: "Changing filament",
    5: "M400 pause",
    6: "Paused (filament ran out)",
    7: "Heating nozzle",
    8: "Calibrating dynamic flow",
    9: "Scanning bed surface",
    10: "Inspecting first layer",
    11: "Identifying build plate type",
    12: "Calibrating Micro Lidar",
    13: "Homing toolhead",
    14: "Cleaning nozzle tip",
    15: "Checking extruder temperature",
    16: "Paused by the user",
    17: "Pause (front cover fall off)",
    18: "Calibrating the micro lidar",
    19: "Calibrating flow ratio",
    20: "Pause (nozzle temperature malfunction)",
    21: "Pause (heatbed temperature malfunction)",
    22: "Filament unloading",
    23: "Pause (step loss)",
    24: "Filament loading",
    25: "Motor noise cancellation",
    26: "Pause (AMS offline)",
    27: "Pause (low speed of the heatbreak fan)",
    28: "Pause (chamber temperature control problem)",
    29: "Cooling chamber",
    30: "Pause (Gcode inserted by user)",
    31: "Motor noise showoff",
    32: "Pause (nozzle clumping)",
    33: "Pause (cutter error)",
    34: "Pause (first layer error)",
    35: "Pause (nozzle clog)",
}
