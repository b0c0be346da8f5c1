"""Library Dashboard - Services Package

This package contains the API client and its transports:
- HTTP transport over httpx
- In-process dispatcher transport
"""
