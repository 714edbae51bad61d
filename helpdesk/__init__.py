"""Helpdesk ticketing service."""
