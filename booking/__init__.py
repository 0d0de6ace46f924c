"""Scheduling engine: slot grid, availability, lifecycle, policy and reschedule."""
