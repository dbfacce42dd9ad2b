from __future__ import annotations

from fastapi import Request

from finance_tracker.config import Config


def get_cfg(request: Request) -> Config:
    return request.app.state.cfg
