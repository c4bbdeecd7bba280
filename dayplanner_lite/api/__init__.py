"""HTTP API for dayplanner_lite."""
