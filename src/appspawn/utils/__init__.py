"""Shared utilities for appspawn."""
