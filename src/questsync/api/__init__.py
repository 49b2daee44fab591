"""HTTP API for calendar connections and sync runs."""
