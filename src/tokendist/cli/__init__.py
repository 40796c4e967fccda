"""Command line interface for tokendist deployments."""
