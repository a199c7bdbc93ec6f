"""Multi-tenant call authorization and provisioning for Asterisk."""

__version__ = "0.1.0"
