"""Tests for the gitterm compute provisioning engine."""
