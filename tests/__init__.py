"""Tests for the Medication Tracker integration."""
