"""Progress snapshots over the resolved Ramadan window."""
