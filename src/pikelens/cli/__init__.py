"""pikelens command line."""
