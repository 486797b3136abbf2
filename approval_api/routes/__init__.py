"""Route modules for the approval API."""
