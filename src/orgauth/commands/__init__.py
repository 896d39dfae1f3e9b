"""Built-in orgauth sub-commands."""
