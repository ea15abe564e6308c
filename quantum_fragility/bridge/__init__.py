"""Simulation bridge for remote engine access.

Provides a JSON-over-TCP server that exposes a simulation engine's adapter
operations, and a client adapter that lets callers drive a remote engine
exactly as they would an in-process one.
"""
