"""Core infrastructure for dayplanner_lite: configuration and time handling."""
