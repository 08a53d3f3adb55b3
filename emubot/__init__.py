"""Unattended emulator build validation bot."""
