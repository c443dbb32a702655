"""Web framework adapters. Each submodule imports its framework lazily via its own extra."""
