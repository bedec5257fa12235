"""
Internal exception hierarchy.

These exceptions never cross a public contract: parser, loader, provisioner
and activator catch them and fold them into their result objects.
"""


class TenantConfigError(Exception):
    """Base class for tenant configuration failures."""


class ConfigSyntaxError(TenantConfigError):
    """The config source could not be deserialized."""


class ConfigSourceError(TenantConfigError):
    """The config source could not be read (missing file, permissions)."""


class ProvisioningConflict(TenantConfigError):
    """A store record blocks onboarding (taken subdomain, incompatible role)."""
