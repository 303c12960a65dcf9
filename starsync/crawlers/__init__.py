"""Upstream crawlers."""
