"""Client helpers for the LabourLink chat service."""
