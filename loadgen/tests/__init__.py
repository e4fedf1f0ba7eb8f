"""Tests for the load generation controller."""
