"""Domain services: batch expansion, planner storage, tasks and reminder scheduling."""
