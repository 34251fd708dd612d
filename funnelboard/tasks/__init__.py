"""Scheduled sync tasks."""
