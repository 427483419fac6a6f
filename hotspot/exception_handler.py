"""
Custom DRF exception handler for consistent captive portal error responses.

Every error response will have the shape:
{
    "success": false,
    "message": "Human-readable error message",
    "error": "Human-readable error message",
    // optional field-level errors for validation
    "errors": { "field_name": ["..."] }
}

The portal reads ``message`` (falling back to ``error``) and shows it to
the visitor as-is.
"""

from rest_framework.views import exception_handler as drf_exception_handler


def _first_message(msgs):
    if isinstance(msgs, list) and msgs:
        return str(msgs[0])
    return str(msgs)


def error_payload(message, errors=None):
    payload = {"success": False, "message": message, "error": message}
    if errors is not None:
        payload["errors"] = errors
    return payload


def custom_exception_handler(exc, context):
    """
    Wrap the default DRF exception handler to produce consistent
    { success, message, error, errors? } responses.
    """
    response = drf_exception_handler(exc, context)

    if response is None:
        # DRF didn't handle it (e.g. unhandled server error)
        return response

    data = response.data

    # DRF returns `{"detail": "..."}` for auth/permission/404/throttle errors
    if isinstance(data, dict) and "detail" in data:
        response.data = error_payload(str(data["detail"]))

    # DRF validation: `{"field": ["msg", ...], ...}` (no "detail" key)
    elif isinstance(data, dict) and "success" not in data:
        messages = [_first_message(msgs) for msgs in data.values()]
        # Fields sharing one message (planId/phone "required") collapse to one
        unique = list(dict.fromkeys(messages))
        response.data = error_payload(
            "; ".join(unique) if unique else "Validation error", errors=data
        )

    elif isinstance(data, list):
        response.data = error_payload("; ".join(str(e) for e in data))

    return response
