"""Shared infrastructure packages used by the helpdesk service."""
