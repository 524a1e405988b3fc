def ok(data=None):
    """Standard success envelope."""
    return {"ok": True, "data": data, "error": None}


def error(code: str = "internal_error", message: str = "An internal error occurred", details=None):
    """Standard error envelope. `details` is only included when given."""
    err = {"code": code, "message": message}
    if details is not None:
        err["details"] = details
    return {"ok": False, "data": None, "error": err}
