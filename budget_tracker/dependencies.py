from fastapi import Request

from .config import Settings
from .services.ledger import Ledger
from .services.pipeline import PaymentPipeline


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_ledger(request: Request) -> Ledger:
    return request.app.state.ledger


def get_pipeline(request: Request) -> PaymentPipeline:
    return request.app.state.pipeline
