"""Core configuration, errors and signature helpers."""
