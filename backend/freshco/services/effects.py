# Overview: Non-critical (best-effort) secondary writes with an explicit result type.

"""
Some writes are secondary to the operation that triggers them: default
module rows after a company registers, bank accounts after a supplier is
created. Their failure must never fail or roll back the primary operation.

run_best_effort() runs the effect inside a SAVEPOINT. On failure only the
savepoint is rolled back, a warning is logged, and the caller gets an
EffectResult with succeeded=False that it can return to the client and
that tests can assert on.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db


@dataclass(frozen=True)
class EffectResult:
    name: str
    succeeded: bool
    error: str | None = None

    def to_dict(self) -> dict:
        return {"name": self.name, "succeeded": self.succeeded, "error": self.error}


def run_best_effort(name: str, func) -> EffectResult:
    try:
        with db.session.begin_nested():
            func()
    except Exception as exc:  # noqa: BLE001
        current_app.logger.warning("Non-critical effect %r failed: %s", name, exc)
        return EffectResult(name=name, succeeded=False, error=str(exc))
    return EffectResult(name=name, succeeded=True)
