"""Domain packages for the event reminders service."""
