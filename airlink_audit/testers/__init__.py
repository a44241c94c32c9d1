"""Automated audit test runner, checks and collaborator contracts."""
