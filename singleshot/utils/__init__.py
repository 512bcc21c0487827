"""Shared utilities for SingleShot."""
