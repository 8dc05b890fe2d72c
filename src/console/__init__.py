"""Hierarchy traversal and VIC report escalation for the admin console."""
