"""HTTP bridge blueprints (health, lifecycle) and their helpers."""
