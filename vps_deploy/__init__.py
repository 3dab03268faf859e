"""Provision a remote host and deploy a containerized web app behind Nginx."""

__version__ = "0.1.0"
