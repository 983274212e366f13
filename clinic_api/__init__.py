"""Clinic management API: authentication, patient records and appointment scheduling."""

__version__ = "1.0.0"
