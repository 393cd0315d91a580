"""Base contract enforcement utilities.

The require() function is the single enforcement mechanism for invariants of
the provenance graph that this package assumes rather than repairs.
"""

from stagelink.contracts.failure import ContractViolation


def require(condition: bool, message: str) -> None:
    """Enforce a provenance-graph contract.

    Parameters
    ----------
    condition : bool
        The invariant that must be true. If False, ContractViolation is raised.

    message : str
        Error message explaining the contract violation.

    Raises
    ------
    ContractViolation
        If condition is False.

    Examples
    --------
    >>> require(position >= 1, "stage positions are 1-based")
    """
    if not condition:
        raise ContractViolation(message)
