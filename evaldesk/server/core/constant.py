"""Server-wide constants."""

PROJECT_NAME = "evaldesk"
API_V1_STR = "/api/v1"

# Header and user agent marker sent by the desktop exam client
DESKTOP_APP_HEADER = "x-opendidac-desktop"
DESKTOP_APP_USER_AGENT = "OpenDidacDesktop"

PIN_CHARSET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
PIN_LENGTH = 6
PIN_MAX_ATTEMPTS = 100

DEFAULT_QUESTION_POINTS = 4.0
