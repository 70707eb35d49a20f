"""Global configuration for the event reminders service."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Supabase (reminders, triggers, notifications, preferences)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Account this client process runs for (empty = guest, local cache only)
REMINDER_USER_ID = os.getenv("REMINDER_USER_ID") or None

# "installed" (receives push while not foregrounded) or "standard"
CLIENT_CAPABILITY = os.getenv("CLIENT_CAPABILITY", "standard")

# Local notifier endpoint used for OS-level notifications
NOTIFIER_WEBHOOK_URL = os.getenv("NOTIFIER_WEBHOOK_URL")

# Upcoming economic events feed (series reminders without a recurrence rule)
EVENTS_API_URL = os.getenv("EVENTS_API_URL")
EVENTS_API_KEY = os.getenv("EVENTS_API_KEY")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = Path(os.getenv("LOCALAPPDATA", ".")) / "event-reminders" / "logs"
LOG_DIR.mkdir(parents=True, exist_ok=True)

# Device cache shared by every client process of this machine
DATA_DIR = Path(os.getenv("LOCALAPPDATA", ".")) / "event-reminders" / "data"
