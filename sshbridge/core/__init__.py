"""Configuration and error types shared by every sshbridge layer."""
