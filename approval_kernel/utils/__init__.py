"""Shared utilities for the approval kernel."""
