"""Client-side process/port state synchronization and control for port-surgeon."""
