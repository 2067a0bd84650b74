"""Clients for the remote services and the local git CLI.

Created: 2026-09-11
"""
