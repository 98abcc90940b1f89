"""Naming rules for VIRT addresses: system names, reserved tags, targets."""
