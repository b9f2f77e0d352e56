"""Song recognition storage."""
