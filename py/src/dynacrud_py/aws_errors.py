from __future__ import annotations

import re

from botocore.exceptions import ClientError

from .errors import (
    AwsError,
    ConditionFailedError,
    NotFoundError,
    TransactionCanceledError,
    ValidationError,
)

_REASON_LIST = re.compile(r"\[([^\]]*)\]")


def map_client_error(err: ClientError) -> Exception:
    code = str(err.response.get("Error", {}).get("Code", ""))
    message = str(err.response.get("Error", {}).get("Message", ""))

    if code == "ConditionalCheckFailedException":
        return ConditionFailedError(message)
    if code == "ValidationException":
        return ValidationError(message)
    if code == "ResourceNotFoundException":
        return NotFoundError(message)

    return AwsError(code=code or "UnknownError", message=message or str(err))


def map_transaction_error(err: ClientError) -> Exception:
    code = str(err.response.get("Error", {}).get("Code", ""))
    message = str(err.response.get("Error", {}).get("Message", ""))

    if code == "TransactionCanceledException":
        return TransactionCanceledError(
            message=message or "transaction canceled",
            reason_codes=cancellation_reason_codes(err.response, message),
        )

    return map_client_error(err)


def cancellation_reason_codes(response: dict, message: str = "") -> tuple[str, ...]:
    """Per-item reason codes of a cancelled transaction, in request order.

    DynamoDB answers with one entry per transact item, ``"None"`` for items
    that did not cause the cancellation. When the structured list is missing
    the bracketed list embedded in the message is parsed instead.
    """
    reasons_raw = response.get("CancellationReasons") or []
    if reasons_raw:
        return tuple(
            str(reason.get("Code") or "None") if isinstance(reason, dict) else "None"
            for reason in reasons_raw
        )

    bracketed = _REASON_LIST.search(message or "")
    if bracketed is None:
        return ()
    return tuple(token.strip() for token in bracketed.group(1).split(",") if token.strip())
