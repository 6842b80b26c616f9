"""Incident lifecycle engine for the multi-tenant helpdesk."""
