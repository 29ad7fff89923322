__all__ = [
    "database",
    "dispatch",
    "errors",
    "leases",
    "lifecycle",
    "logging_config",
    "matching",
    "models",
    "schemas",
    "status",
    "store",
]
