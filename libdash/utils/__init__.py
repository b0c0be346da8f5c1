"""Library Dashboard - Utilities Package

Field validators and CLI output helpers.
"""
