from fastapi import Request

from app.services.relay_hub import RelayHub


def get_relay_hub(request: Request) -> RelayHub:
    return request.app.state.relay_hub
