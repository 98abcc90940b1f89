"""Registrar — register, update, delete, look up and search VIRT names."""
