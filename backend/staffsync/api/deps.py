from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from staffsync.config import Settings
from staffsync.services.gateway import PeerGateway
from staffsync.services.membership import MembershipCoordinator
from staffsync.services.propagation import PropagationChannel


def get_app_settings(request: Request) -> Settings:
    """Settings the running application was built with."""
    return request.app.state.settings


SettingsDep = Annotated[Settings, Depends(get_app_settings)]


def get_peer_gateway(request: Request) -> PeerGateway:
    """Gateway to the peer service, injected at application build time."""
    return request.app.state.peer_gateway


GatewayDep = Annotated[PeerGateway, Depends(get_peer_gateway)]


def get_propagation_channel(request: Request) -> PropagationChannel:
    """The application's deferred propagation channel."""
    return request.app.state.propagation_channel


def get_coordinator(
    request: Request,
    settings: SettingsDep,
    gateway: GatewayDep,
    channel: Annotated[PropagationChannel, Depends(get_propagation_channel)],
) -> MembershipCoordinator:
    """A fresh membership coordinator for this request."""
    return MembershipCoordinator(
        gateway,
        channel,
        unavailable_policy=settings.peer_unavailable_policy,
        operation=f"{request.method} {request.url.path}",
    )


CoordinatorDep = Annotated[MembershipCoordinator, Depends(get_coordinator)]
