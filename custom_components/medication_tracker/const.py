"""Constants for the Medication Tracker integration."""

DOMAIN = "medication_tracker"

# Storage
STORAGE_VERSION = 1
STORAGE_KEY_MEDICATIONS = f"{DOMAIN}.medications"
STORAGE_KEY_DOSES = f"{DOMAIN}.doses"
STORAGE_KEY_PIN = f"{DOMAIN}.pin"

# Configuration Keys (Entry Level)
CONF_NOTIFY_SERVICE = "notify_service"
CONF_REFILL_CHECK_TIME = "refill_check_time"
DEFAULT_REFILL_CHECK_TIME = "10:00"

# Medication Properties (Item Level)
ATTR_MEDICATION_ID = "medication_id"
CONF_ID = "id"
CONF_NAME = "name"
CONF_DOSAGE = "dosage"
CONF_TIMES = "times"
CONF_START_DATE = "start_date"
CONF_DURATION = "duration"
CONF_REMINDER_ENABLED = "reminder_enabled"
CONF_CURRENT_SUPPLY = "current_supply"
CONF_TOTAL_SUPPLY = "total_supply"
CONF_REFILL_AT = "refill_at"
CONF_REFILL_REMINDER = "refill_reminder"
CONF_LAST_REFILL_DATE = "last_refill_date"
CONF_NOTES = "notes"
CONF_FREQUENCY = "frequency"

# Dose Properties
ATTR_TAKEN = "taken"
ATTR_TIMESTAMP = "timestamp"
ATTR_DATE = "date"
ATTR_START = "start"
ATTR_END = "end"
ATTR_PIN = "pin"

# Sentinel duration for ongoing medications
DURATION_ONGOING = -1

DURATION_OPTIONS = {
    "7": 7,
    "14": 14,
    "30": 30,
    "90": 90,
    "ongoing": DURATION_ONGOING,
}

# Preset slots per frequency
FREQUENCY_TIMES = {
    "once_daily": ["09:00"],
    "twice_daily": ["09:00", "21:00"],
    "three_times_daily": ["09:00", "15:00", "21:00"],
    "four_times_daily": ["09:00", "13:00", "17:00", "21:00"],
    "as_needed": [],
}

# Supply status
SUPPLY_LOW = "Low"
SUPPLY_MEDIUM = "Medium"
SUPPLY_GOOD = "Good"
SUPPLY_MEDIUM_CUTOFF = 50

# Dose status
STATUS_TAKEN = "taken"
STATUS_MISSED = "missed"
STATUS_PENDING = "pending"

UNKNOWN_MEDICATION = "Unknown medication"

# Reminder payload
REMINDER_KIND_DOSE = "dose"
REMINDER_KIND_REFILL = "refill"
REFILL_SLOT = "refill"

EVENT_REMINDER = f"{DOMAIN}_reminder"
SIGNAL_UPDATED = f"{DOMAIN}_updated"
SIGNAL_MEDICATION_ADDED = f"{DOMAIN}_medication_added"
SIGNAL_MEDICATION_REMOVED = f"{DOMAIN}_medication_removed"

PIN_MIN_LENGTH = 4
PIN_MAX_LENGTH = 6
