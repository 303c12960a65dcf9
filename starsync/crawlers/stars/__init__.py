"""Stargazer pagination and sync orchestration."""
