"""
Application-wide constants.
Centralizes magic numbers that are not worth a setting.
"""

# Display formatting
APPOINTMENT_ID_DISPLAY_LENGTH = 8  # Short id shown in emails and logs

# Validation limits
MAX_CLIENT_NAME_LENGTH = 120
MIN_SERVICE_DURATION_MINUTES = 15
MAX_SERVICE_DURATION_MINUTES = 300

# Time constants
SECONDS_IN_HOUR = 3600

# Webhook limits
MAX_REQUEST_BODY_SIZE = 1024 * 1024  # 1MB
