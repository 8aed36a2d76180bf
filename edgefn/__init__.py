"""Deployment, invocation and metering controller for Knative edge functions."""

__version__ = "1.0.0"
