# Overview: Uniform JSON envelope for every API response.

from __future__ import annotations

from flask import jsonify


def ok(data=None, status: int = 200):
    """{"success": true, "data": ...}"""
    return jsonify({"success": True, "data": data}), status


def created(data=None):
    return ok(data, 201)


def error_response(message: str, code: str, status: int, details: dict | None = None):
    """{"success": false, "error": {"message": ..., "code": ...}}"""
    error = {"message": message, "code": code}
    if details:
        error["details"] = details
    return jsonify({"success": False, "error": error}), status
