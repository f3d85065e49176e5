"""Configuration, logging and deadline helpers."""
