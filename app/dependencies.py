from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.services.index_calculator import InvalidParameterError
from app.utils.time_utils import parse_user_time

limiter = Limiter(key_func=get_remote_address)


def get_store(request: Request):
    """Get the TimeSeriesStore from app state"""
    return request.app.state.store


def get_pipeline(request: Request):
    return request.app.state.pipeline


def get_scheduler(request: Request):
    return request.app.state.scheduler


def get_index_service(request: Request):
    return request.app.state.index_service


def get_uptrend_service(request: Request):
    return request.app.state.uptrend_service


def get_backtest_service(request: Request):
    return request.app.state.backtest_service


def get_optimizer(request: Request):
    return request.app.state.optimizer


def get_range_cache(request: Request):
    return request.app.state.range_cache


def parse_time_param(value: str, tz_name: str) -> int:
    """User time string in ``tz_name`` -> UTC epoch ms; bad input becomes a 400."""
    try:
        return parse_user_time(value, tz_name)
    except (ValueError, KeyError) as e:
        raise InvalidParameterError(
            f"Invalid time {value!r}, expected yyyy-MM-dd HH:mm ({e})"
        ) from None
