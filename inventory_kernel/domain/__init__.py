"""Pure domain logic: sign mapping, value objects, snapshots, catalog contract."""
