"""Configuration, time and HTTP helpers."""
