"""Calendar models and the recurrence expansion core."""
