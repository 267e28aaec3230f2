"""Energy performance certificate matching and reporting.

Submodules are imported directly (``domain.epc.services`` and friends);
the reconciliation core in ``backend.matching`` depends on ``.models``.
"""
