# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.
"""Identity provider settings for single sign-on of administrators.

Exactly one provider can be configured, selected by `sso.provider`. Each
provider knows how to build its issuer URL from its own settings, which
scopes to request, and how to map the groups of a signed-in user to a role.
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
)

from pydantic import Field

from pydeltashare.auth import Principal
from pydeltashare.exceptions import ConfigurationMissingError
from pydeltashare.typedef import DeltaBaseModel, RecursiveDict
from pydeltashare.utils.config import Config

logger = logging.getLogger(__name__)

SSO = "sso"
PROVIDER = "provider"
ISSUER_URL = "issuer-url"
CLIENT_ID = "client-id"
CLIENT_SECRET = "client-secret"
TENANT_ID = "tenant-id"
DOMAIN = "domain"
AUTH_SERVER_ID = "auth-server-id"
ADMIN_GROUP = "admin-group"

ADMIN = "admin"
EDITOR = "editor"
VIEWER = "viewer"

OPENID_SCOPES = ["openid", "profile", "email"]
ADMIN_GROUPS = {"DeltaSharingAdmins", "Administrators", "admins", "Admin"}
EDITOR_GROUPS = {"DeltaSharingEditors", "Editors", "editors"}


class IdentityProviderType(str, Enum):
    AZURE = "azure"
    OKTA = "okta"
    OIDC = "oidc"


class IdentityProvider(DeltaBaseModel):
    provider: IdentityProviderType = Field()
    issuer_url: str = Field(alias="issuerUrl")
    client_id: str = Field(alias="clientId")
    client_secret: str = Field(alias="clientSecret")
    scopes: List[str] = Field(default_factory=lambda: list(OPENID_SCOPES))
    admin_group: Optional[str] = Field(alias="adminGroup", default=None)

    def role_for_groups(self, groups: List[str]) -> str:
        return ROLE_MAPPERS[self.provider](groups, self.admin_group)

    def principal_from_claims(self, claims: Dict[str, Any]) -> Principal:
        """Build the principal of a signed-in user from the claims of their ID token."""
        subject = claims.get("sub") or claims.get("oid")
        if not subject:
            raise ValueError("ID token has no subject claim")
        groups = _string_list(claims.get("groups"))
        roles = _string_list(claims.get("roles")) or _string_list(claims.get("appRoles"))
        name = claims.get("name") or claims.get("preferred_username") or claims.get("email") or str(subject)
        return Principal(
            id=str(subject),
            name=str(name),
            roles=[self.role_for_groups(groups), *roles],
            groups=groups,
        )


def _string_list(value: Any) -> List[str]:
    return [str(v) for v in value] if isinstance(value, list) else []


def _require(settings: RecursiveDict, key: str, provider: IdentityProviderType) -> str:
    value = settings.get(key)
    if not value or not isinstance(value, str):
        raise ConfigurationMissingError(f"{SSO}.{key} is required for the {provider.value} identity provider")
    return value


def _azure_issuer_url(settings: RecursiveDict) -> str:
    tenant_id = _require(settings, TENANT_ID, IdentityProviderType.AZURE)
    return f"https://login.microsoftonline.com/{tenant_id}/v2.0"


def _okta_issuer_url(settings: RecursiveDict) -> str:
    domain = re.sub(r"^https?://", "", _require(settings, DOMAIN, IdentityProviderType.OKTA))
    auth_server_id = settings.get(AUTH_SERVER_ID) or "default"
    return f"https://{domain}/oauth2/{auth_server_id}"


def _oidc_issuer_url(settings: RecursiveDict) -> str:
    return _require(settings, ISSUER_URL, IdentityProviderType.OIDC)


def _azure_role(groups: List[str], admin_group: Optional[str]) -> str:
    # Azure AD emits group object ids, so only the configured group is recognized
    return ADMIN if admin_group and admin_group in groups else VIEWER


def _okta_role(groups: List[str], admin_group: Optional[str]) -> str:
    if admin_group and admin_group in groups:
        return ADMIN
    if ADMIN_GROUPS.intersection(groups):
        return ADMIN
    if EDITOR_GROUPS.intersection(groups):
        return EDITOR
    return VIEWER


ISSUER_URL_BUILDERS: Dict[IdentityProviderType, Callable[[RecursiveDict], str]] = {
    IdentityProviderType.AZURE: _azure_issuer_url,
    IdentityProviderType.OKTA: _okta_issuer_url,
    IdentityProviderType.OIDC: _oidc_issuer_url,
}

DEFAULT_SCOPES: Dict[IdentityProviderType, List[str]] = {
    IdentityProviderType.AZURE: OPENID_SCOPES + ["User.Read", "offline_access"],
    IdentityProviderType.OKTA: OPENID_SCOPES + ["groups", "offline_access"],
    IdentityProviderType.OIDC: OPENID_SCOPES,
}

ROLE_MAPPERS: Dict[IdentityProviderType, Callable[[List[str], Optional[str]], str]] = {
    IdentityProviderType.AZURE: _azure_role,
    IdentityProviderType.OKTA: _okta_role,
    IdentityProviderType.OIDC: _azure_role,
}


def build_identity_provider(settings: RecursiveDict) -> IdentityProvider:
    """Build the identity provider from the `sso` section of the configuration.

    Raises:
        ValueError: If the provider is not one of the supported ones.
        ConfigurationMissingError: If a setting the provider needs is absent.
    """
    provider_type = IdentityProviderType(str(settings.get(PROVIDER, "")).lower())
    return IdentityProvider(
        provider=provider_type,
        issuer_url=ISSUER_URL_BUILDERS[provider_type](settings),
        client_id=_require(settings, CLIENT_ID, provider_type),
        client_secret=_require(settings, CLIENT_SECRET, provider_type),
        scopes=list(DEFAULT_SCOPES[provider_type]),
        admin_group=settings.get(ADMIN_GROUP),
    )


def load_identity_provider(config: Optional[Config] = None) -> Optional[IdentityProvider]:
    """Load the configured identity provider, or None when single sign-on is not set up."""
    settings = (config or Config()).get_section(SSO)
    if not settings.get(PROVIDER):
        logger.debug("No identity provider configured")
        return None

    try:
        return build_identity_provider(settings)
    except ValueError:
        logger.warning("Unknown identity provider: %s", settings.get(PROVIDER))
    except ConfigurationMissingError as e:
        logger.warning("Skipping identity provider registration: %s", e)
    return None
