# payroll_api/common/http.py
"""
Response envelope shared by every blueprint:

    {"success": true,  "data": ..., "meta": {...}}
    {"success": false, "error": {"message": ..., "code": ..., "detail": ..., "errors": ...}}

`meta` and the optional error keys are omitted when empty.
"""
from flask import jsonify


def _envelope(success: bool, key: str, body, meta=None):
    doc = {"success": success, key: body}
    if meta:
        doc["meta"] = dict(meta)
    return jsonify(doc)


def ok(data=None, status=200, **meta):
    return _envelope(True, "data", data, meta), status


def fail(message="Bad Request", status=400, code=None, detail=None, errors=None):
    extras = {"code": code, "detail": detail, "errors": errors}
    err = {"message": message}
    err.update((k, v) for k, v in extras.items() if v)
    return _envelope(False, "error", err), status
