"""
Constants Module - Centralized configuration values
===================================================

PURPOSE: Single source of truth for constants used across the codebase
PATTERN: Modular constants organized by category
SCOPE: Booking automation, mail retrieval, and run coordination
"""

# Facility Site Constants
FACILITY_HOST = "reservation.frontdesksuite.ca"
FACILITY_PATH_PREFIX = "/rcfs/"
MIN_NUMBER_OF_PEOPLE = 1
MAX_NUMBER_OF_PEOPLE = 2
DEFAULT_NUMBER_OF_PEOPLE = 1
MAX_CONFIGURATION_NAME_LENGTH = 60
MAX_SPORT_NAME_LENGTH = 50

# Page Timeouts (seconds)
PAGE_LOAD_TIMEOUT = 30.0
GROUP_SIZE_PAGE_TIMEOUT = 60.0
CONTACT_INFO_PAGE_TIMEOUT = 10.0
VERIFICATION_PAGE_TIMEOUT = 60.0
DEFAULT_POLL_INTERVAL = 0.5
VERIFICATION_POLL_INTERVAL = 1.0

# Contact Confirmation Retry Policy
MAX_CONFIRM_ATTEMPTS = 6
PRE_RETRY_PAUSE_RANGE = (1.0, 1.8)
CHALLENGE_PAUSE_RANGE = (1.5, 2.2)
QUICK_PAUSE_RANGE = (0.5, 1.0)
POST_CLICK_SETTLE = 0.3
POST_CONFIRM_SETTLE = 2.0

# Verification Rounds
VERIFICATION_ROUNDS = 3
VERIFICATION_ROUND_WAIT = 3.0

# Whole-Run and Batch Coordination (seconds)
RUN_TIMEOUT_SECONDS = 300.0
BATCH_CEILING_SECONDS = 300.0
BATCH_POLL_INTERVAL = 2.0
BATCH_FINALIZE_INTERVAL = 0.5
BATCH_SETTLE_DELAY = 2.0
RECONCILIATION_WINDOW_SECONDS = 30.0
DOM_SNAPSHOT_CHARS = 1000

# Automatic Runs
AUTORUN_PRIOR_DAYS = 2
AUTORUN_TARGET_TIME = (18, 0, 1)
AUTORUN_WAIT_STEP = 10.0

# Page Selectors
NUMBER_OF_PEOPLE_SELECTORS = [
    '#reservationCount',
    'input[name="ReservationCount"]',
    'input[type="number"]',
]
GROUP_SIZE_CONFIRM_SELECTORS = [
    '#submit-btn',
    'button[type="submit"]',
]
PHONE_FIELD_SELECTORS = [
    '#telephone',
    'input[type="tel"]',
    'input[name*="PhoneNumber"]',
    'input[placeholder*="Telephone"]',
]
EMAIL_FIELD_SELECTORS = [
    '#email',
    'input[type="email"]',
    'input[name*="Email"]',
    'input[placeholder*="Email"]',
]
NAME_FIELD_SELECTORS = [
    'input[id^="field"]',
    'input[name*="field2021"]',
]
CONTACT_CONFIRM_SELECTORS = [
    '.mdc-button',
    'button[type="submit"]',
    'input[type="submit"]',
]
VERIFICATION_INPUT_SELECTORS = [
    'input[name*="verification"]',
    'input[name*="code"]',
    'input[id*="verification"]',
    'input[id*="code"]',
    'input[placeholder*="code"]',
    'input[type="number"]',
    'input[type="text"]',
]

# Page Text Markers
RETRY_TEXTS = ["Retry"]
VERIFICATION_TEXTS = ["verification code", "receive the code", "check your email"]
VERIFICATION_FAILURE_TEXTS = ["invalid code", "incorrect code", "code is invalid"]
CONFIRMATION_TEXTS = ["confirmation", "confirmed", "your reservation"]

# Mail Retrieval
IMAP_TLS_PORT = 993
IMAP_PLAIN_PORT = 143
VERIFICATION_SENDER = "noreply@frontdesksuite.com"
VERIFICATION_SUBJECT = "Verify your email"
VERIFICATION_SUBJECT_KEYWORD = "verification"
MAIL_LOOKBACK_SECONDS = 600
MAIL_RESPONSE_TIMEOUT = 10.0
MAIL_CONNECTION_TIMEOUT = 30.0
MAIL_FALLBACK_TIMEOUT = 35.0
MAIL_MIN_CONNECTION_INTERVAL = 2.0
VERIFICATION_CODE_PATTERNS = [
    r"verification code is:\s*(\d{4})",
    r"code is:\s*(\d{4})",
    r"code:\s*(\d{4})",
]
FALLBACK_CODE_PATTERN = r"\b(\d{4})\b"
DENIED_CODES = frozenset({"0000", "1234", "1111"})

# Gmail Support
GMAIL_DOMAINS = ("gmail.com", "googlemail.com")
GMAIL_IMAP_SERVER = "imap.gmail.com"
GMAIL_APP_PASSWORD_PATTERN = r"^[a-z]{4}\s[a-z]{4}\s[a-z]{4}\s[a-z]{4}$"

# Validation Patterns
PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"
EMAIL_PATTERN = r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$"
HOSTNAME_PATTERN = (
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)

# Persistence Keys
LAST_RUN_INFO_KEY = "last_run_info"
USER_SETTINGS_KEY = "user_settings"
