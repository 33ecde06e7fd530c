"""Tests for team-orchestrator."""
