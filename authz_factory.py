# ==============================================================================
# AuthZ Provider Factory
# ==============================================================================

import logging
from typing import Any, Callable, Dict

from authz_provider import AuthorizationProvider, OperatorRoleProvider

logger = logging.getLogger(__name__)


async def _create_operator_role_provider(settings: Dict[str, Any]) -> AuthorizationProvider:
    """
    Builds the provider that resolves capabilities from the operator and
    assistant arrays embedded in Event documents. It needs no settings: all
    the state it reads travels with the request.
    """
    authz_instance = OperatorRoleProvider()
    logger.info("✔️  Operator-role AuthZ provider loaded and ready.")
    return authz_instance


_PROVIDERS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "operator_roles": _create_operator_role_provider,
}


async def create_authz_provider(provider_name: str, settings: Dict[str, Any]) -> AuthorizationProvider:
    """
    Factory function to create the configured AuthZ provider.

    Raises:
        ValueError: if the provider name is not known
    """
    factory = _PROVIDERS.get(provider_name)
    if factory is None:
        raise ValueError(
            f"Unknown AUTHZ_PROVIDER: '{provider_name}'. "
            f"Supported providers: {', '.join(sorted(_PROVIDERS))}"
        )
    logger.info(f"Creating AuthZ provider '{provider_name}'...")
    return await factory(settings)
