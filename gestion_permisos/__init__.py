"""Permission management core for the case-management admin console."""
