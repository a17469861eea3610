"""Shared utilities for the KumaScript runtime."""
