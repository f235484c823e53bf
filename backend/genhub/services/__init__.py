"""Generation services: errors, retry, polling, storage and provider adapters."""
