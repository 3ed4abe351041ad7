"""Periodic HTTP uptime and content checks with bounded concurrency."""
