"""Test suite for the coachrag engine."""
