"""Tenant configuration validation and provisioning for the booking platform."""
