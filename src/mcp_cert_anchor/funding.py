"""UTXO selection and fee calculation.

Selection is deliberately simple: the single largest output funds the
transaction. It is deterministic and never needs more than one input,
but it is not fee-optimal coin selection.
"""

from decimal import ROUND_CEILING, Decimal

from mcp_cert_anchor.errors import NoFunds, ValidationError
from mcp_cert_anchor.node.interface import UnspentOutput


def select_utxo(utxos: list[UnspentOutput]) -> UnspentOutput:
    """Pick the output with the largest value (first one on ties).

    Raises:
        NoFunds: If there are no outputs
    """
    if not utxos:
        raise NoFunds("No spendable outputs at the funding address")
    return max(utxos, key=lambda u: u.value)


def estimate_fee(tx_size: int, fee_rate: float) -> int:
    """Fee in satoshis for a transaction of tx_size bytes.

    Rounded up so the fee never falls below size * rate.
    """
    if tx_size < 0:
        raise ValidationError("Transaction size cannot be negative")
    if fee_rate <= 0:
        raise ValidationError("Fee rate must be positive")
    fee = Decimal(tx_size) * Decimal(str(fee_rate))
    return int(fee.to_integral_value(rounding=ROUND_CEILING))
