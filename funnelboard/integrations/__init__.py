"""Clients for the external CRM and ads platforms."""
