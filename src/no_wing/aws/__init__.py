"""AWS client construction."""

from no_wing.aws.client_factory import (
    SUPPORTED_SERVICES,
    ServiceClientFactory,
    call_aws_api_async,
)

__all__ = ["SUPPORTED_SERVICES", "ServiceClientFactory", "call_aws_api_async"]
