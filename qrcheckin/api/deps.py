from fastapi import Request

from qrcheckin.core.config import Settings
from qrcheckin.core.gateway import ValidationGateway
from qrcheckin.core.lifecycle import TokenLifecycleManager


def get_manager(request: Request) -> TokenLifecycleManager:
    return request.app.state.manager


def get_gateway(request: Request) -> ValidationGateway:
    return request.app.state.gateway


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
