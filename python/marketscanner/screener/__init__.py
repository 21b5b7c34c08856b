"""Screening engine, alert manager and preset catalog."""
