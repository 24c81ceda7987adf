"""Scenario playbook orchestration service."""
