"""Generation provider adapters.

Each module implements one provider behind the ``BaseAdapter`` contract:
  validate -> submit -> (poll status) -> offload media -> AdapterResponse
"""
