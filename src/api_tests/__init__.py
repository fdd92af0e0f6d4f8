"""API-side auth plumbing: HTTP login and the per-role storage-state cache."""
