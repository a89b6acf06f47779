"""Recover certificate envelopes from fetched transactions."""

import logging

from mcp_cert_anchor.config import LocateStrategy
from mcp_cert_anchor.envelope import Envelope, decode_envelope
from mcp_cert_anchor.errors import UnsupportedScriptFormat
from mcp_cert_anchor.node.interface import OutputInfo, TransactionInfo
from mcp_cert_anchor.primitives import (
    decode_push_data,
    is_data_output_script,
    strip_data_marker,
)

logger = logging.getLogger(__name__)


def locate_data_output(outputs: list[OutputInfo]) -> OutputInfo:
    """Return the output with the smallest value.

    Among equally cheap outputs an unspendable data output wins, then the
    first listed.

    This is a heuristic: anchor transactions give the data output 1 satoshi,
    so it is normally the cheapest. A change output worth less than the data
    output would defeat it; ``locate_data_output_by_script`` avoids that.

    Raises:
        UnsupportedScriptFormat: If there are no outputs
    """
    if not outputs:
        raise UnsupportedScriptFormat("Transaction has no outputs")
    lowest = min(o.value for o in outputs)
    cheapest = [o for o in outputs if o.value == lowest]
    chosen = next(
        (o for o in cheapest if is_data_output_script(o.script)), cheapest[0]
    )
    logger.info(
        "Assuming output with %d sats is the data output (smallest of %d)",
        chosen.value, len(outputs),
    )
    return chosen


def locate_data_output_by_script(outputs: list[OutputInfo]) -> OutputInfo:
    """Return the first output whose script is an unspendable data output.

    Raises:
        UnsupportedScriptFormat: If no output carries a data marker
    """
    for output in outputs:
        if is_data_output_script(output.script):
            return output
    raise UnsupportedScriptFormat("No data output in transaction")


def recover_envelope(
    transaction: TransactionInfo,
    strategy: LocateStrategy = LocateStrategy.VALUE,
) -> Envelope:
    """Extract and decode the envelope carried by an anchor transaction.

    Raises:
        UnsupportedScriptFormat: If the data output is not a push-data script
        PrefixNotFound: If the payload lacks the magic prefix
        MalformedEnvelope: If the payload body is not a valid envelope
    """
    if strategy == LocateStrategy.SCRIPT:
        output = locate_data_output_by_script(transaction.outputs)
    else:
        output = locate_data_output(transaction.outputs)

    blob = decode_push_data(strip_data_marker(output.script))
    return decode_envelope(blob)
